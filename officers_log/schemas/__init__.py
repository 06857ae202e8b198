# Flag schemas (per-document key/value bag)
from .flags import (
    ArcInfo,
    CallbackLink,
    MilestoneBenefit,
    PendingMilestoneBenefit,
    FLAG_KEYS,
    dump_flag,
    parse_flag,
)

# WebSocket envelopes and payloads
from .ws_messages import (
    AppliedBenefit,
    CallbackOffer,
    CallbackPromptPayload,
    CallbackResponsePayload,
    ChooseBenefitPayload,
    LinkLogPayload,
    OfferLog,
    OfferValue,
    ToggleArcPayload,
    WsMessage,
    validate_ws_payload,
)
