"""
Locust Load Test Suite

Needs an ACTIVE competition to fight over. Create one as an admin and pass
its id, or pass an admin token and let the suite create a small one:

  COMPETITION_ID=1 locust -f locustfile.py --tags contention
  ADMIN_TOKEN=... locust -f locustfile.py --tags contention

Run scenarios:
  locust -f locustfile.py --tags contention   # Test overselling
  locust -f locustfile.py --tags throughput   # Test listing cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
import string
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

COMPETITION_IDS = []
CONTENTION_COMPETITION_ID = int(os.environ["COMPETITION_ID"]) if os.environ.get("COMPETITION_ID") else None
ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN")
CONTENTION_TICKETS = 100


def random_email():
    return f"load_{random.randint(10000, 99999)}_{random.randint(0, 9999)}@test.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=10))


def register_and_login(client) -> dict:
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": "test12345",
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": "test12345"})
    if resp.status_code == 200:
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return {}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Contention competition: {CONTENTION_COMPETITION_ID or 'created by first user (ADMIN_TOKEN)'}")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - many users, 100 tickets

    Run: locust -f locustfile.py --tags contention -u 200 -r 50 --run-time 30s

    After test, verify no ticket was handed out twice and nothing is lost:
      SELECT status, COUNT(*) FROM tickets WHERE competition_id = X GROUP BY status;
    Counts must sum to total_tickets.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = register_and_login(self.client)
        if CONTENTION_COMPETITION_ID is None and ADMIN_TOKEN:
            future = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
            resp = self.client.post(
                "/api/v1/competitions/",
                json={
                    "title": "Contention Test Competition",
                    "ticket_price": "1.00",
                    "total_tickets": CONTENTION_TICKETS,
                    "max_tickets_per_user": 10,
                    "draw_date": future,
                    "status": "ACTIVE",
                },
                headers={"Authorization": f"Bearer {ADMIN_TOKEN}"},
            )
            if resp.status_code == 201:
                globals()["CONTENTION_COMPETITION_ID"] = resp.json()["id"]
                print(f"\n✓ Created competition {CONTENTION_COMPETITION_ID} with {CONTENTION_TICKETS} tickets\n")

    @tag("contention")
    @task(5)
    def reserve_lowest(self):
        """Everyone asks for the lowest free numbers at once."""
        if not CONTENTION_COMPETITION_ID or not self.headers:
            return
        with self.client.post(
            "/api/v1/tickets/reserve",
            json={"competition_id": CONTENTION_COMPETITION_ID, "quantity": random.randint(1, 3)},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: SOLD_OUT / CONTENTION
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("contention")
    @task(2)
    def reserve_explicit(self):
        """Fight over the same explicit numbers."""
        if not CONTENTION_COMPETITION_ID or not self.headers:
            return
        with self.client.post(
            "/api/v1/tickets/reserve",
            json={"competition_id": CONTENTION_COMPETITION_ID, "ticket_numbers": [random.randint(1, 10)]},
            headers=self.headers,
            catch_response=True,
            name="/api/v1/tickets/reserve [explicit]",
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("contention")
    @task(1)
    def release(self):
        if not CONTENTION_COMPETITION_ID or not self.headers:
            return
        self.client.post(
            "/api/v1/tickets/release",
            json={"competition_id": CONTENTION_COMPETITION_ID},
            headers=self.headers,
        )


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: Stop Redis, run again
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_competitions_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(
            f"/api/v1/competitions/?page={page}&page_size=20",
            name="/api/v1/competitions/ [cached]",
        )
        if resp.status_code == 200:
            for competition in resp.json().get("competitions", []):
                if competition["id"] not in COMPETITION_IDS:
                    COMPETITION_IDS.append(competition["id"])

    @tag("throughput", "read")
    @task(5)
    def ticket_status(self):
        """Availability is never cached; this hits the Ticket Pool."""
        if COMPETITION_IDS:
            self.client.post(
                "/api/v1/tickets/status",
                json={"competition_id": random.choice(COMPETITION_IDS)},
                name="/api/v1/tickets/status",
            )

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = register_and_login(self.client)

    def _expect(self, payload, allowed, name):
        with self.client.post(
            "/api/v1/tickets/reserve",
            json=payload,
            headers=self.headers,
            catch_response=True,
            name=name,
        ) as resp:
            if resp.status_code in allowed:
                resp.success()
            else:
                resp.failure(f"Expected {allowed}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_competition(self):
        self._expect({"competition_id": 999999, "quantity": 1}, [404], "reserve [unknown]")

    @tag("edge")
    @task
    def zero_quantity(self):
        self._expect({"competition_id": 1, "quantity": 0}, [400, 404], "reserve [zero]")

    @tag("edge")
    @task
    def huge_quantity(self):
        self._expect({"competition_id": 1, "quantity": 999999}, [400, 404], "reserve [huge]")

    @tag("edge")
    @task
    def both_quantity_and_numbers(self):
        self._expect(
            {"competition_id": 1, "quantity": 1, "ticket_numbers": [1]}, [400, 404], "reserve [both]"
        )

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/tickets/reserve",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/tickets/reserve",
            json={"competition_id": 1, "quantity": 1},
            catch_response=True,
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")
