from django.urls import path

from .views import ping, register, registrations, export_registrations

urlpatterns = [
    path('ping', ping),
    path('register', register),
    path('registrations', registrations),
    path('export', export_registrations),
]
