from django.urls import path
from .views import (
    coefficient_calculate, coefficient_system_list,
    coefficient_system_categories, coefficient_ranges
)

urlpatterns = [
    path('coefficients/calculate/', coefficient_calculate, name='coefficient-calculate'),
    path('coefficients/systems/', coefficient_system_list, name='coefficient-system-list'),
    path('coefficients/systems/<str:system_key>/categories/', coefficient_system_categories, name='coefficient-system-categories'),
    path('coefficients/ranges/', coefficient_ranges, name='coefficient-ranges'),
]
