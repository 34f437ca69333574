import logging
import time

from django.http import FileResponse
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .serializers import RegistrationSerializer
from .store import get_store
from .utils_export import EXPORT_FILENAME, XLSX_CONTENT_TYPE, build_registrations_workbook

logger = logging.getLogger(__name__)


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def ping(request):
    """Liveness probe."""
    return Response({'ok': True, 'ts': int(time.time() * 1000)})


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def register(request):
    """Accept one registration form.

    The signature is normalized to a PNG data URL and entryTime is filled in
    when the client left it out. The record is appended to the store whole or
    not at all.
    """
    serializer = RegistrationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    get_store().append(serializer.validated_data)
    return Response({'success': True})


@api_view(['GET', 'DELETE'])
def registrations(request):
    """Admin: list every registration (GET) or clear them all (DELETE)."""
    store = get_store()
    if request.method == 'DELETE':
        store.clear()
        logger.info('All registrations cleared by admin.')
        return Response({'success': True})
    return Response(store.list())


@api_view(['GET'])
def export_registrations(request):
    """Admin: download every registration as an Excel workbook."""
    try:
        out = build_registrations_workbook(get_store().list())
    except Exception:
        logger.exception('Export failed')
        return Response({'error': 'Export failed'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return FileResponse(out, as_attachment=True, filename=EXPORT_FILENAME, content_type=XLSX_CONTENT_TYPE)
