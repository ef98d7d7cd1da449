"""
Test suite for Core module
Tests: JWT login, token refresh, current user endpoint
"""
from django.test import TestCase
from rest_framework import status
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class AuthTests(TestCase):
    """Test auth endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user(username='manager', password='testpass123')
        self.client = AuthenticatedAPIClient()

    def test_login_returns_tokens(self):
        """Test login with valid credentials"""
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'manager',
            'password': 'testpass123'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_login_wrong_password(self):
        """Test login with invalid credentials"""
        response = self.client.post('/api/v1/auth/login/', {
            'username': 'manager',
            'password': 'wrong'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_refresh(self):
        """Test access token refresh"""
        login = self.client.post('/api/v1/auth/login/', {
            'username': 'manager',
            'password': 'testpass123'
        }, format='json')
        response = self.client.post('/api/v1/auth/refresh/', {
            'refresh': login.data['refresh']
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

    def test_refresh_with_garbage_token(self):
        """Test refresh with an invalid token"""
        response = self.client.post('/api/v1/auth/refresh/', {'refresh': 'not-a-token'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me(self):
        """Test current user endpoint"""
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], 'manager')
        self.assertEqual(response.data['groups'], [])

    def test_me_requires_authentication(self):
        """Test current user endpoint without token"""
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
