class InspectorError(Exception):
    pass


class TransportError(InspectorError):
    """The remote endpoint could not be reached or failed to answer."""


class CallReverted(TransportError):
    """The endpoint answered, but the contract call reverted or returned nothing decodable."""


class MissingCapability(InspectorError):
    """An RPC probe is not supported by the endpoint."""


class EmptyContract(InspectorError):
    pass


class MalformedEvent(InspectorError):
    pass


class DuplicatePriorityIndex(MalformedEvent):
    def __init__(self, index: int, first: bytes, second: bytes):
        self.index = index
        self.first = first
        self.second = second
        super().__init__(
            f"priority index {index} claimed by two transactions: 0x{first.hex()} and 0x{second.hex()}"
        )


class IntegrityMismatch(InspectorError):
    def __init__(self, expected: bytes, computed: bytes, what: str = "priority tree root"):
        self.expected = expected
        self.computed = computed
        super().__init__(f"{what} mismatch: on-chain 0x{expected.hex()} != computed 0x{computed.hex()}")
