from django.utils import timezone
from rest_framework import serializers

from .exceptions import SignatureError
from .signature import normalize_signature

# Record field order; the export columns follow it.
RECORD_FIELDS = (
    'name', 'grade', 'section', 'lrn', 'emergency', 'address', 'contact',
    'birthdate', 'condition', 'signature', 'imageCode', 'entryTime',
)

ENTRY_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'


class FreeTextField(serializers.CharField):
    """CharField that also takes JSON booleans and numbers, storing their text."""

    def to_internal_value(self, data):
        if isinstance(data, bool):
            data = 'true' if data else 'false'
        elif isinstance(data, (int, float)):
            data = str(data)
        return super().to_internal_value(data)


def _text_field():
    return FreeTextField(required=False, allow_blank=True, allow_null=True,
                                 trim_whitespace=False, default='')


class RegistrationSerializer(serializers.Serializer):
    """One submitted registration form. Text fields are free-form."""

    name = _text_field()
    grade = _text_field()
    section = _text_field()
    lrn = _text_field()
    emergency = _text_field()
    address = _text_field()
    contact = _text_field()
    birthdate = _text_field()
    condition = _text_field()
    signature = _text_field()
    imageCode = _text_field()
    entryTime = _text_field()

    def validate_signature(self, value):
        try:
            return normalize_signature(value)
        except SignatureError as exc:
            raise serializers.ValidationError(str(exc))

    def validate(self, attrs):
        record = {field: attrs.get(field) or '' for field in RECORD_FIELDS}
        if not record['entryTime']:
            record['entryTime'] = timezone.localtime().strftime(ENTRY_TIME_FORMAT)
        return record
