from django.contrib import admin

from .models import (
    ClientReport,
    MetaConnection,
    MetaInsightDaily,
    ReportHistory,
    Setting,
    SyncLog,
    SyncRun,
    TokenLog,
)

admin.site.register(Setting)
admin.site.register(TokenLog)
admin.site.register(MetaConnection)
admin.site.register(MetaInsightDaily)
admin.site.register(ReportHistory)
admin.site.register(ClientReport)
admin.site.register(SyncRun)
admin.site.register(SyncLog)
