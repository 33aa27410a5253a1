from django.contrib import admin

from .models import ClientProfile

admin.site.register(ClientProfile)
