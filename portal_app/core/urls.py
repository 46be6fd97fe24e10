from django.urls import path

from core import views_functions, views_health

urlpatterns = [
    path("api/functions/<str:function_name>", views_functions.function_dispatch, name="api-function"),
    path("healthz", views_health.healthz, name="healthz"),
    path("readyz", views_health.readyz, name="readyz"),
]
