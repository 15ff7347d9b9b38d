import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from .models import NotificationPreference
from .serializers import NotificationPreferenceSerializer, validate_preference_update

logger = logging.getLogger(__name__)


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated])
def notification_preferences(request):
    """Get (creating defaults on first access) or update notification preferences"""
    if request.method == 'GET':
        preferences, created = NotificationPreference.objects.get_or_create(user=request.user)
        if created:
            logger.info(f"Created default notification preferences for {request.user.username}")
        return Response({'preferences': NotificationPreferenceSerializer(preferences).data})
    else:  # PATCH
        updates, error = validate_preference_update(request.data)
        if error:
            return Response({'error': error}, status=status.HTTP_400_BAD_REQUEST)
        if not updates:
            return Response({'error': 'No valid fields to update'}, status=status.HTTP_400_BAD_REQUEST)

        preferences, created = NotificationPreference.objects.update_or_create(user=request.user, defaults=updates)
        return Response({
            'preferences': NotificationPreferenceSerializer(preferences).data,
            'message': 'Notification preferences created' if created else 'Notification preferences updated',
        })
