class BtfFormatError(ValueError):
    """Raised when raw BTF data cannot be decoded."""


class BtfGenError(ValueError):
    """Base class for failures while generating Rust definitions."""


class UnsupportedTypeKind(BtfGenError):
    pass


class InvalidWidth(BtfGenError):
    pass


class MalformedName(BtfGenError):
    pass


class LayoutInconsistency(BtfGenError):
    pass


class EmptyEnum(BtfGenError):
    pass
