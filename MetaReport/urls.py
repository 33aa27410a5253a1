from django.urls import path

from . import api_views

urlpatterns = [
    path('report', api_views.client_report, name='client-report'),
    path('report/', api_views.client_report, name='client-report-slash'),
    path('report/live', api_views.client_live_report, name='client-live-report'),
    path('report/live/', api_views.client_live_report, name='client-live-report-slash'),
    path('admin/report', api_views.admin_report, name='admin-report'),
    path('admin/report/', api_views.admin_report, name='admin-report-slash'),
    path('refresh-token', api_views.refresh_token, name='refresh-token'),
    path('refresh-token/', api_views.refresh_token, name='refresh-token-slash'),
]
