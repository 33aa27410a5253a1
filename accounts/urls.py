from django.urls import path

from . import api_views, views

urlpatterns = [
    path('login', views.auth_login, name='auth-login'),
    path('login/', views.auth_login, name='auth-login-slash'),
    path('logout', views.auth_logout, name='auth-logout'),
    path('logout/', views.auth_logout, name='auth-logout-slash'),
    path('me', views.auth_me, name='auth-me'),
    path('me/', views.auth_me, name='auth-me-slash'),
    path('users', api_views.users, name='users'),
    path('users/', api_views.users, name='users-slash'),
    path('admin/clients', api_views.admin_clients, name='admin-clients'),
    path('admin/clients/', api_views.admin_clients, name='admin-clients-slash'),
]
