from define.decoding.decoder import DecodedLog, decode_log, parse_data_word, parse_topic_field, word_at
from define.decoding.nfpm import make_nfpm_registry, to_raw_event
from define.decoding.signatures import event_spec_from_signature, make_registry, topic0_for
from define.decoding.specs import DataFieldSpec, EventRegistry, EventSpec, TopicFieldSpec, registry_topic0s

__all__ = [
    "DecodedLog",
    "decode_log",
    "parse_data_word",
    "parse_topic_field",
    "word_at",
    "make_nfpm_registry",
    "to_raw_event",
    "event_spec_from_signature",
    "make_registry",
    "topic0_for",
    "DataFieldSpec",
    "EventRegistry",
    "EventSpec",
    "TopicFieldSpec",
    "registry_topic0s",
]
