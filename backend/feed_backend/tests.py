from django.test import SimpleTestCase, override_settings


class HealthCheckTests(SimpleTestCase):
	@override_settings(BACKEND_RPC={"BASE_URL": "http://backend.local", "API_KEY": "anon"})
	def test_healthy_with_configured_backend(self):
		response = self.client.get("/health/")
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.json()["services"], {"channels": "healthy", "backend_rpc": "configured"})

	@override_settings(BACKEND_RPC={"BASE_URL": "http://backend.local", "API_KEY": ""})
	def test_unconfigured_backend_is_unhealthy(self):
		response = self.client.get("/health/")
		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.json()["status"], "unhealthy")
