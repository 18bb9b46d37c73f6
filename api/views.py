# api/views.py
import logging
from functools import partial

from django.conf import settings
from django.db import transaction
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from accounts.identity import current_user_id
from algorithms.blood_compatibility import BLOOD_GROUPS
from bloodalert.exceptions import NotFound
from bloodrequests import services
from bloodrequests.tasks import dispatch_blood_request_notifications, reconcile_donor_response_notifications
from donors.models import DonorProfile
from notifications.store import NotificationStore

from .serializers import (
    BloodRequestSerializer,
    BloodRequestSubmitSerializer,
    DonorReplySerializer,
    DonorResponseSerializer,
    DonorSerializer,
    NotificationSerializer,
    StatusUpdateSerializer,
)

logger = logging.getLogger(__name__)


def parse_positive_int(value, name):
    if value in (None, ''):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError({name: 'Must be a positive integer.'})
    if number < 1:
        raise ValidationError({name: 'Must be a positive integer.'})
    return number


class DonorViewSet(viewsets.ReadOnlyModelViewSet):
    """API endpoint for viewing donors"""
    queryset = DonorProfile.objects.select_related('user').order_by('-created_at')
    serializer_class = DonorSerializer
    permission_classes = [IsAuthenticated, IsAdminUser]

    def get_queryset(self):
        queryset = super().get_queryset()
        blood_group = self.request.query_params.get('blood_group')
        if blood_group and blood_group != 'all':
            queryset = queryset.filter(blood_group=blood_group)
        return queryset


class BloodRequestViewSet(viewsets.GenericViewSet):
    """
    Blood requests: public submission, donor replies, admin management
    """
    serializer_class = BloodRequestSerializer

    def get_permissions(self):
        if self.action == 'create':
            return [AllowAny()]
        if self.action in ('retrieve', 'respond'):
            return [IsAuthenticated()]
        return [IsAuthenticated(), IsAdminUser()]

    def list(self, request):
        params = request.query_params
        filters = {
            'status': params.get('status') or None,
            'blood_group': params.get('blood_group') or None,
            'urgency_level': params.get('urgency_level') or None,
            'limit': parse_positive_int(params.get('limit'), 'limit'),
        }
        blood_requests = services.list_blood_requests(**filters)

        pruned = 0
        if settings.BLOOD_ALERT['PRUNE_ON_LIST']:
            pruned = services.prune_stale_requests(blood_requests)
            if pruned:
                blood_requests = services.list_blood_requests(**filters)

        data = BloodRequestSerializer(blood_requests, many=True).data
        return Response({'success': True, 'data': data, 'total': len(data), 'pruned': pruned})

    def create(self, request):
        serializer = BloodRequestSubmitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        requester_id = current_user_id(request)
        data = dict(serializer.validated_data)
        data['source'] = 'dashboard' if requester_id else 'public_form'

        result = services.submit_blood_request(data, requester_id=requester_id)
        if result.dispatch_error is not None:
            logger.warning(f"Queueing notification retry for request {result.id}")
            transaction.on_commit(partial(dispatch_blood_request_notifications.apply_async,
                                          args=[result.id], countdown=60))

        return Response({
            'success': True,
            'message': result.message,
            'request_id': result.id,
            'notifications_sent': result.notifications_sent,
            'compatible_donors_found': result.compatible_donors_found,
            'dispatch_failed': result.dispatch_error is not None,
        }, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        blood_request = services.get_blood_request(pk)

        user = request.user
        if not user.is_staff and blood_request.requester_id != user.pk:
            involved = (
                blood_request.notifications.filter(user=user).exists()
                or blood_request.donor_responses.filter(donor=user).exists()
            )
            if not involved:
                raise NotFound('Blood request not found')

        return Response({'success': True, 'data': BloodRequestSerializer(blood_request).data})

    @action(detail=True, methods=['put', 'patch'], url_path='status')
    def update_status(self, request, pk=None):
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        blood_request = services.update_blood_request_status(
            pk,
            serializer.validated_data['status'],
            fulfilled=serializer.validated_data.get('fulfilled'),
        )
        return Response({
            'success': True,
            'message': 'Blood request status updated successfully',
            'data': BloodRequestSerializer(blood_request).data,
        })

    @action(detail=True, methods=['post'])
    def respond(self, request, pk=None):
        """Record the signed-in donor's reply to a blood request"""
        serializer = DonorReplySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        caller_id = current_user_id(request)
        donor_id = serializer.validated_data.get('donor_id', caller_id)

        result = services.respond_to_blood_request(
            pk,
            donor_id,
            serializer.validated_data['response'],
            serializer.validated_data['message'],
            caller_id=caller_id,
        )
        if not result.reconciled:
            logger.warning(f"Queueing notification bookkeeping retry for request {pk} donor {donor_id}")
            transaction.on_commit(partial(reconcile_donor_response_notifications.apply_async,
                                          args=[result.donor_response.blood_request_id, result.donor_response.donor_id],
                                          countdown=60))

        return Response({
            'success': True,
            'message': result.message,
            'reconciled': result.reconciled,
            'donor_response': DonorResponseSerializer(result.donor_response).data,
        })

    @action(detail=True, methods=['post'], url_path='dispatch', url_name='dispatch')
    def redispatch(self, request, pk=None):
        """Notify compatible donors again, e.g. after a failed dispatch"""
        result = services.redispatch_blood_request(pk)
        if result.error is not None:
            raise result.error

        return Response({
            'success': True,
            'message': f"Notified {result.notifications_sent} of {result.compatible_donors} compatible donors",
            'notifications_sent': result.notifications_sent,
            'compatible_donors_found': result.compatible_donors,
        })

    @action(detail=False, methods=['post'])
    def prune(self, request):
        max_age_days = parse_positive_int(request.data.get('max_age_days'), 'max_age_days')
        deleted = services.prune_stale_requests(services.list_blood_requests(), max_age_days=max_age_days)
        return Response({'success': True, 'message': f"Deleted {deleted} old request(s)", 'deleted': deleted})


class NotificationViewSet(viewsets.GenericViewSet):
    """The caller's notifications plus acceptances on requests they submitted"""
    serializer_class = NotificationSerializer
    permission_classes = [IsAuthenticated]

    store_class = NotificationStore

    def list(self, request):
        notifications = list(self.store_class().list_for_user(request.user))
        data = NotificationSerializer(notifications, many=True).data
        return Response({
            'success': True,
            'data': data,
            'total': len(data),
            'unread_count': sum(1 for n in notifications if not n.read),
        })

    @action(detail=True, methods=['post'])
    def read(self, request, pk=None):
        notification = self.store_class().mark_read(pk, request.user)
        return Response({'success': True, 'data': NotificationSerializer(notification).data})

    @action(detail=False, methods=['post'], url_path='read-all')
    def read_all(self, request):
        updated = self.store_class().mark_all_read(request.user)
        return Response({'success': True, 'message': f"{updated} notification(s) marked as read"})


@api_view(['GET'])
@permission_classes([AllowAny])
def blood_types(request):
    """The eight blood groups, for forms"""
    return Response({'success': True, 'data': list(BLOOD_GROUPS)})


@api_view(['GET'])
@permission_classes([AllowAny])
def health(request):
    return Response({'success': True, 'message': 'Blood Alert API is running'})
