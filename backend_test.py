import os
import sys
from datetime import datetime, timedelta, timezone

import requests


class Thittam1HubAPITester:
    def __init__(self, base_url=None):
        self.base_url = (base_url or os.environ.get("API_BASE_URL") or "http://localhost:8000/api").rstrip("/")
        self.admin_token = None
        self.organizer_token = None
        self.participant_token = None
        self.event_id = None
        self.tier_id = None
        self.registration_id = None
        self.tests_run = 0
        self.tests_passed = 0
        self.test_results = []

    def log_test(self, name, success, details=""):
        """Log test result"""
        self.tests_run += 1
        if success:
            self.tests_passed += 1
            print(f"✅ {name}")
        else:
            print(f"❌ {name} - {details}")

        self.test_results.append({
            "test": name,
            "success": success,
            "details": details
        })

    def run_test(self, name, method, endpoint, expected_status, data=None, headers=None):
        """Run a single API test"""
        url = f"{self.base_url}/{endpoint}"
        test_headers = {'Content-Type': 'application/json'}
        if headers:
            test_headers.update(headers)

        try:
            response = requests.request(method, url, json=data, headers=test_headers, timeout=15)
        except requests.RequestException as e:
            self.log_test(name, False, f"Exception: {str(e)}")
            return False, {}

        success = response.status_code == expected_status
        details = f"Status: {response.status_code}"
        if not success:
            try:
                error_data = response.json()
                details += f", Error: {error_data.get('detail', 'Unknown error')}"
            except ValueError:
                details += f", Response: {response.text[:100]}"

        self.log_test(name, success, details)
        if success and response.content:
            try:
                return True, response.json()
            except ValueError:
                return True, {}
        return success, {}

    def _auth(self, token):
        return {'Authorization': f'Bearer {token}'}

    def test_health_endpoints(self):
        print("\n🔍 Testing Health Endpoints...")
        self.run_test("Root API endpoint", "GET", "", 200)
        self.run_test("Health check endpoint", "GET", "health", 200)

    def test_admin_login(self):
        """Log in as the seeded admin, when credentials are provided."""
        email = os.environ.get("DEFAULT_ADMIN_EMAIL")
        password = os.environ.get("DEFAULT_ADMIN_PASSWORD")
        if not email or not password:
            print("\n⚠️  DEFAULT_ADMIN_EMAIL/DEFAULT_ADMIN_PASSWORD not set; skipping admin login")
            return False

        print("\n🔍 Testing Admin Authentication...")
        success, response = self.run_test("Admin login", "POST", "auth/login", 200, {"email": email, "password": password})
        if success and 'access_token' in response:
            self.admin_token = response['access_token']
            return True
        return False

    def _register_user(self, label, role):
        timestamp = datetime.now().strftime("%H%M%S%f")
        data = {
            "name": f"{label} {timestamp}",
            "email": f"{label.lower()}{timestamp}@example.com",
            "password": "testpass123",
            "role": role,
        }
        success, response = self.run_test(f"{label} registration", "POST", "auth/register", 201, data)
        if success:
            return response.get('access_token')
        return None

    def test_user_registration(self):
        print("\n🔍 Testing User Registration...")
        self.organizer_token = self._register_user("Organizer", "organizer")
        self.participant_token = self._register_user("Participant", "participant")
        if self.participant_token:
            self.run_test("Get current user", "GET", "auth/me", 200, headers=self._auth(self.participant_token))

    def test_event_setup(self):
        if not self.organizer_token:
            print("\n❌ Skipping event setup - no organizer token")
            return

        print("\n🔍 Testing Event Setup...")
        headers = self._auth(self.organizer_token)
        start = datetime.now(timezone.utc) + timedelta(days=14)
        event_data = {
            "title": f"Smoke Test Event {datetime.now().strftime('%H%M%S')}",
            "description": "Created by the API smoke tester",
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(hours=8)).isoformat(),
            "registration_deadline": (start - timedelta(days=1)).isoformat(),
        }
        success, response = self.run_test("Create event", "POST", "events", 201, event_data, headers)
        if not success:
            return
        self.event_id = response['id']

        self.run_test("Publish event", "PUT", f"events/{self.event_id}", 200, {"status": "PUBLISHED"}, headers)
        success, response = self.run_test(
            "Create ticket tier",
            "POST",
            f"events/{self.event_id}/ticket-tiers",
            201,
            {"name": "General", "price": 0, "quantity": 1},
            headers,
        )
        if success:
            self.tier_id = response['id']
        self.run_test("Public tier list", "GET", f"events/{self.event_id}/ticket-tiers", 200)

    def test_participant_flow(self):
        if not (self.participant_token and self.event_id and self.tier_id):
            print("\n❌ Skipping participant flow - missing token, event or tier")
            return

        print("\n🔍 Testing Participant Flow...")
        headers = self._auth(self.participant_token)
        success, response = self.run_test(
            "Register for event",
            "POST",
            f"events/{self.event_id}/register",
            201,
            {"ticket_tier_id": self.tier_id},
            headers,
        )
        if success:
            self.registration_id = response.get('id')
        self.run_test("My registrations", "GET", "me/registrations", 200, headers=headers)

    def test_organizer_dashboard(self):
        if not (self.organizer_token and self.event_id):
            print("\n❌ Skipping organizer dashboard - no event")
            return

        print("\n🔍 Testing Organizer Dashboard...")
        headers = self._auth(self.organizer_token)
        self.run_test("Registration stats", "GET", f"events/{self.event_id}/registrations/stats", 200, headers=headers)
        self.run_test("Waitlist stats", "GET", f"events/{self.event_id}/waitlist/stats", 200, headers=headers)
        self.run_test("Judging stats", "GET", f"events/{self.event_id}/judging/stats", 200, headers=headers)
        if self.registration_id:
            self.run_test(
                "Check in attendee",
                "POST",
                f"events/{self.event_id}/registrations/{self.registration_id}/check-in",
                200,
                headers=headers,
            )
        self.run_test("Provision workspace", "POST", f"events/{self.event_id}/workspaces/provision", 201, headers=headers)

    def test_admin_config(self):
        if not self.admin_token:
            print("\n❌ Skipping admin config - no admin token")
            return

        print("\n🔍 Testing Admin Config...")
        self.run_test("Read config", "GET", "admin/config", 200, headers=self._auth(self.admin_token))

    def run_all_tests(self):
        """Run all tests in sequence"""
        print("🚀 Starting Thittam1Hub API Testing...")
        print(f"Testing against: {self.base_url}")

        self.test_health_endpoints()
        self.test_admin_login()
        self.test_user_registration()
        self.test_event_setup()
        self.test_participant_flow()
        self.test_organizer_dashboard()
        self.test_admin_config()

        return self.print_summary()

    def print_summary(self):
        """Print test summary"""
        print("\n📊 Test Summary:")
        print(f"Tests run: {self.tests_run}")
        print(f"Tests passed: {self.tests_passed}")
        if self.tests_run:
            print(f"Success rate: {(self.tests_passed/self.tests_run*100):.1f}%")

        if self.tests_passed < self.tests_run:
            print("\n❌ Failed tests:")
            for result in self.test_results:
                if not result['success']:
                    print(f"  - {result['test']}: {result['details']}")

        return self.tests_passed == self.tests_run


def main():
    tester = Thittam1HubAPITester(sys.argv[1] if len(sys.argv) > 1 else None)
    success = tester.run_all_tests()
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
