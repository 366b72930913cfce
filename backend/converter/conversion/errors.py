"""Conversion error taxonomy."""


class ConversionError(Exception):
    """Base class for every error raised by the conversion core."""


class InvalidType(ConversionError):
    pass


class DecodeError(ConversionError):
    """The source image could not be decoded."""


class ReadError(ConversionError):
    """The source document could not be read."""


class EncodeError(ConversionError):
    """The output could not be serialized."""


class NotFound(ConversionError):
    def __init__(self, item_id: str):
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class InvalidState(ConversionError):
    pass


class QueueFull(ConversionError):
    pass
