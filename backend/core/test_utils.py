"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.coefficients.dataset import parse_dataset
from backend.coefficients import registry
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', is_staff=False, is_superuser=False):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser
        )

    @staticmethod
    def grid_payload(widths=None, heights=None, values=None):
        """Raw grid as it appears in coefficients.json (defaults to a 2x2 grid)"""
        return {
            'widths': [1, 2] if widths is None else widths,
            'heights': [1, 2] if heights is None else heights,
            'values': [[10, 20], [30, 40]] if values is None else values,
        }

    @staticmethod
    def dataset_payload(products=None):
        """
        Raw coefficients document.

        products maps system key -> {category: grid payload}; by default two
        systems "uni1_zebra" (categories "E", "1") and "mini_roll" (category "2").
        """
        if products is None:
            products = {
                'uni1_zebra': {
                    'E': TestDataFactory.grid_payload(),
                    '1': TestDataFactory.grid_payload(values=[[11, 21], [31, 41]]),
                },
                'mini_roll': {
                    '2': TestDataFactory.grid_payload(
                        widths=[0.5, 1.0, 1.5],
                        heights=[1.0, 2.0],
                        values=[[5, 6, 7], [8, 9, 10]]
                    ),
                },
            }
        return {
            'products': {
                system_key: {'categories': categories}
                for system_key, categories in products.items()
            }
        }

    @staticmethod
    def create_dataset(products=None):
        """Parsed PricingDataset built from dataset_payload"""
        return parse_dataset(TestDataFactory.dataset_payload(products))


class CoefficientDataMixin:
    """Installs a test dataset as the process-wide one, restoring the previous resolver afterwards"""

    def use_dataset(self, dataset):
        previous = registry.set_resolver(registry.build_resolver(dataset))
        self.addCleanup(registry.set_resolver, previous)
        return registry.get_resolver()


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
