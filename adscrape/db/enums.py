from enum import Enum


class AdTypeEnum(str, Enum):
    competitor = "competitor"
    self_ = "self"


class PollOutcomeEnum(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"
