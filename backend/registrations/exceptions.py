class RegistrationError(Exception):
    """Base class for registration errors."""


class SignatureError(RegistrationError):
    """A signature value is not a usable image data URL."""


class SignaturePadConfigError(RegistrationError):
    """A signature pad was set up without its drawing surface."""
