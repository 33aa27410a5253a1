from django.urls import path

from . import api_views

urlpatterns = [
    path('report', api_views.meta_report, name='meta-report'),
    path('report/', api_views.meta_report, name='meta-report-slash'),
    path('health', api_views.meta_health, name='meta-health'),
    path('health/', api_views.meta_health, name='meta-health-slash'),
]
