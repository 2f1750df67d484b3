from stockbook.application.services.migration import max_sequence, migrate_document
from stockbook.domain.schemas.document import COLLECTIONS, LedgerDocument


class TestMigrateDocument:
    def test_empty_input_gets_every_collection(self):
        document = migrate_document(None)

        assert all(document[name] == [] for name in COLLECTIONS)
        assert document["metadata"]["nextIds"]["cashFlow"] == 1

    def test_input_is_not_modified(self):
        raw = {"containers": [{"id": "C1", "products": [{"productId": "2", "quantity": 5, "costPerUnit": 1.2}]}]}

        migrate_document(raw)

        assert raw["containers"][0]["products"][0] == {"productId": "2", "quantity": 5, "costPerUnit": 1.2}

    def test_legacy_container_lines(self):
        raw = {"containers": [{
            "id": "C7",
            "supplier": "Nile Traders",
            "purchaseDate": "2024-01-10T00:00:00.000Z",
            "arrivalDate": "",
            "shippingCost": "100",
            "products": [{"productId": "2", "quantity": 5, "costPerUnit": 1.2, "bagWeight": 20}],
        }]}

        container = migrate_document(raw)["containers"][0]

        line = container["products"][0]
        assert line == {"productId": 2, "bagQuantity": 5, "costPerKg": 1.2, "bagWeight": 20}
        assert container["purchaseDate"] == "2024-01-10"
        assert container["arrivalDate"] is None
        assert container["totalCost"] == 5 * 20 * 1.2 + 100

    def test_partner_contributions_list_is_summed(self):
        raw = {"partners": [{
            "id": "P1",
            "name": "Amal",
            "ownershipPercent": "60",
            "capitalAccount": {
                "initialInvestment": 1000,
                "additionalContributions": [{"amount": 200}, {"amount": 50}],
                "currentEquity": 999,
            },
        }]}

        account = migrate_document(raw)["partners"][0]["capitalAccount"]

        assert account["additionalContributions"] == 250
        assert "currentEquity" not in account

    def test_sale_totals_filled(self):
        raw = {"sales": [{"id": 4, "productId": 1, "quantity": "3", "pricePerUnit": 10, "costPerUnit": 6}]}

        sale = migrate_document(raw)["sales"][0]

        assert sale["totalAmount"] == 30
        assert sale["profit"] == 12

    def test_counters_raised_above_existing_ids(self):
        raw = {
            "metadata": {"nextIds": {"product": 2, "partner": 1}},
            "products": [{"id": 9, "name": "Rice"}],
            "partners": [{"id": "P4", "name": "Amal", "ownershipPercent": 10}],
            "containers": [{"id": "custom-id", "purchaseDate": "2024-01-01", "supplier": "X"}],
        }

        next_ids = migrate_document(raw)["metadata"]["nextIds"]

        assert next_ids["product"] == 10
        assert next_ids["partner"] == 5
        assert next_ids["container"] == 1

    def test_result_validates_as_ledger_document(self):
        raw = {
            "products": [{"id": "1", "name": "Rice", "costPerUnit": 3, "currentStock": "7"}],
            "expenses": [{"id": 1, "category": "Rent", "description": "Jan", "amount": "500", "date": "2024-01-01"}],
        }

        document = LedgerDocument.model_validate(migrate_document(raw))

        assert document.products[0].current_stock == 7
        assert document.expenses[0].amount == 500.0


def test_max_sequence():
    assert max_sequence([{"id": "W3"}, {"id": "W12"}, {"id": "X99"}], "W") == 12
    assert max_sequence([{"id": 4}, {"id": "5"}]) == 4
    assert max_sequence([]) == 0
