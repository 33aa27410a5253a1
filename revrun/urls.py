from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('accounts.urls')),
    path('api/meta/', include('MetaReport.meta_urls')),
    path('api/', include('MetaReport.urls')),
]
