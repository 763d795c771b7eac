"""
error taxonomy of the node kernel

ConfigurationError -> setup-time, fatal, never retried\n
CapacityError -> call-time, indicates a model or ordering bug
"""


class NRSimError(Exception):
    """base class of every error raised by nrisac"""


class ConfigurationError(NRSimError, ValueError):
    """invalid node / cell / carrier configuration"""


class InsufficientDuplexSpacing(ConfigurationError):
    pass


class InvalidCarrierFrequency(ConfigurationError):
    pass


class HubCapacityError(ConfigurationError):
    """no free registration slot left in the packet distribution hub"""


class CapacityError(NRSimError, LookupError):
    """a bounded table is full or the requested entry does not exist"""


class TooManyLogicalChannels(CapacityError):
    def __init__(self, rnti: int, limit: int):
        super().__init__(
            f"Number of logical channels between UE {rnti} and its associated gNB "
            f"must not exceed the configured limit {limit}"
        )
        self.rnti = rnti
        self.limit = limit


class RLCEntityNotPresent(CapacityError):
    def __init__(self, rnti: int, lcid: int):
        super().__init__(
            f"No RLC entity for RNTI {rnti}, LCID {lcid}: "
            f"application must be associated to a logical channel"
        )
        self.rnti = rnti
        self.lcid = lcid


class MaxApplicationsReached(CapacityError):
    def __init__(self, limit: int):
        super().__init__(
            f"Number of applications that can be configured has reached the limit {limit}"
        )
        self.limit = limit


class InvalidSDUSize(NRSimError, ValueError):
    pass
