import os
import unittest
from decimal import Decimal

os.environ["DATABASE_URL"] = "sqlite://"

from fastapi.testclient import TestClient  # noqa: E402

from finance_tracker import main  # noqa: E402
from finance_tracker.db import init_db, metadata  # noqa: E402


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        metadata.drop_all(main.engine)
        init_db(main.engine)
        self.client = TestClient(main.app)
        self.user_id = self.signup("ana@example.com")
        self.headers = {"x-user-id": str(self.user_id)}

    def signup(self, email: str, password: str = "secret") -> int:
        response = self.client.post("/auth/signup", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200)
        return response.json()["id"]

    def create_category(self, name: str, headers=None) -> int:
        response = self.client.post(
            "/categories", json={"name": name}, headers=headers or self.headers
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["id"]

    def create_transaction(self, amount: str, txn_type="EXPENSE", day="2024-05-10", **extra):
        body = {"amount": amount, "type": txn_type, "date": day}
        body.update(extra)
        return self.client.post("/transactions", json=body, headers=self.headers)


class AuthApiTests(ApiTestCase):
    def test_login_checks_password(self) -> None:
        ok = self.client.post(
            "/auth/login", json={"email": "ANA@example.com", "password": "secret"}
        )
        bad = self.client.post(
            "/auth/login", json={"email": "ana@example.com", "password": "wrong"}
        )

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["id"], self.user_id)
        self.assertEqual(bad.status_code, 401)

    def test_duplicate_signup_conflicts(self) -> None:
        response = self.client.post(
            "/auth/signup", json={"email": "ana@example.com", "password": "x"}
        )

        self.assertEqual(response.status_code, 409)

    def test_missing_identity_is_unauthorized(self) -> None:
        self.assertEqual(self.client.get("/budgets").status_code, 401)


class BudgetApiTests(ApiTestCase):
    def test_budget_status_and_summary(self) -> None:
        food_id = self.create_category("Food")
        created = self.client.post(
            "/budgets",
            json={"monthly_limit": "200", "year": 2024, "month": 5},
            headers=self.headers,
        )
        self.client.post(
            "/budgets",
            json={"monthly_limit": "50", "category_id": food_id, "year": 2024, "month": 5},
            headers=self.headers,
        )
        self.create_transaction("1000", txn_type="INCOME", day="2024-05-01")
        self.create_transaction("45", category_id=food_id)

        self.assertEqual(created.status_code, 201)
        self.assertIsNone(created.json()["category_id"])

        status = self.client.get(
            "/budgets/status", params={"year": 2024, "month": 5}, headers=self.headers
        ).json()
        self.assertEqual(status["overall"]["scope_id"], "OVERALL")
        self.assertEqual(Decimal(status["overall"]["spent"]), Decimal("0"))
        self.assertEqual(len(status["category_budgets"]), 1)
        food = status["category_budgets"][0]
        self.assertEqual(food["category_name"], "Food")
        self.assertEqual(Decimal(food["spent"]), Decimal("45"))
        self.assertEqual(food["status"], "EXCEEDED")
        self.assertEqual([alert["severity"] for alert in status["alerts"]], ["CRITICAL"])

        summary = self.client.get(
            "/budgets/monthly-summary", params={"year": 2024, "month": 5}, headers=self.headers
        ).json()
        self.assertEqual(Decimal(summary["total_income"]), Decimal("1000"))
        self.assertEqual(Decimal(summary["savings"]), Decimal("955"))
        self.assertEqual(summary["category_expenses"][0]["category_name"], "Food")

    def test_repeating_percentage_is_rounded(self) -> None:
        self.client.post(
            "/budgets",
            json={"monthly_limit": "300", "year": 2024, "month": 5},
            headers=self.headers,
        )
        self.create_transaction("100")

        status = self.client.get(
            "/budgets/status", params={"year": 2024, "month": 5}, headers=self.headers
        ).json()

        self.assertEqual(status["overall"]["usage_percentage"], "33.33")

        self.create_transaction("300", txn_type="INCOME", day="2024-05-01")
        summary = self.client.get(
            "/budgets/monthly-summary", params={"year": 2024, "month": 5}, headers=self.headers
        ).json()

        self.assertEqual(summary["savings_percentage"], "66.67")
        self.assertEqual(summary["category_expenses"], [])

    def test_prevent_exceed_blocks_transaction(self) -> None:
        self.client.post(
            "/budgets",
            json={"monthly_limit": "100", "year": 2024, "month": 5, "prevent_exceed": True},
            headers=self.headers,
        )

        rejected = self.create_transaction("150")
        check = self.client.post(
            "/budgets/validate-expense",
            json={"amount": "150", "type": "EXPENSE", "date": "2024-05-10"},
            headers=self.headers,
        )

        self.assertEqual(rejected.status_code, 409)
        self.assertEqual(rejected.json()["scope_id"], "OVERALL")
        self.assertEqual(self.client.get("/transactions", headers=self.headers).json(), [])
        self.assertFalse(check.json()["allowed"])

    def test_over_limit_warning_is_returned_with_saved_transaction(self) -> None:
        self.client.post(
            "/budgets",
            json={"monthly_limit": "100", "year": 2024, "month": 5},
            headers=self.headers,
        )

        response = self.create_transaction("150")

        self.assertEqual(response.status_code, 200)
        self.assertIn("Warning", response.json()["budget_warning"])

    def test_only_owner_can_delete_budget(self) -> None:
        budget_id = self.client.post(
            "/budgets",
            json={"monthly_limit": "100", "year": 2024, "month": 5},
            headers=self.headers,
        ).json()["id"]
        other_headers = {"x-user-id": str(self.signup("bo@example.com"))}

        forbidden = self.client.delete(f"/budgets/{budget_id}", headers=other_headers)
        deleted = self.client.delete(f"/budgets/{budget_id}", headers=self.headers)
        missing = self.client.delete(f"/budgets/{budget_id}", headers=self.headers)

        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(deleted.status_code, 204)
        self.assertEqual(missing.status_code, 404)

    def test_invalid_month_is_bad_request(self) -> None:
        response = self.client.get(
            "/budgets/status", params={"year": 2024, "month": 13}, headers=self.headers
        )

        self.assertEqual(response.status_code, 400)

    def test_budget_for_foreign_category_is_forbidden(self) -> None:
        other_headers = {"x-user-id": str(self.signup("bo@example.com"))}
        foreign_id = self.create_category("Misc", headers=other_headers)

        response = self.client.post(
            "/budgets",
            json={"monthly_limit": "10", "category_id": foreign_id},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 403)


class CategoryAndExportApiTests(ApiTestCase):
    def test_category_in_use_cannot_be_deleted(self) -> None:
        food_id = self.create_category("Food")
        self.create_transaction("10", category_id=food_id)

        response = self.client.delete(f"/categories/{food_id}", headers=self.headers)

        self.assertEqual(response.status_code, 409)

    def test_category_breakdown(self) -> None:
        food_id = self.create_category("Food")
        self.create_transaction("30", category_id=food_id)
        self.create_transaction("10")

        rows = self.client.get(
            "/analytics/category-breakdown",
            params={"year": 2024, "month": 5},
            headers=self.headers,
        ).json()

        self.assertEqual([row["category"] for row in rows], ["Food", "Uncategorized"])
        self.assertEqual(Decimal(rows[0]["percentage_of_total"]), Decimal("75"))

    def test_export_csv(self) -> None:
        self.create_transaction("12.5", note="Lunch")

        response = self.client.get("/export/transactions.csv", headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/csv"))
        lines = response.text.splitlines()
        self.assertEqual(lines[0], "ID,Amount,Type,Date,Note,Category")
        self.assertIn("12.50,EXPENSE,2024-05-10,Lunch,", lines[1])


if __name__ == "__main__":
    unittest.main()
