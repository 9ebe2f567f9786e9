from storefront.catalog import SAMPLE_PRODUCTS, seed_sample_products


def test_list_and_filter_products(client, products):
    r = client.get("/products")
    assert r.status_code == 200
    assert {p["name"] for p in r.json()} == {"Glow Serum", "Lip Balm Set"}

    r = client.get("/products", params={"category": "lip-care"})
    assert [p["id"] for p in r.json()] == [2]
    assert r.json()[0]["price"] == 800
    assert r.json()[0]["stockQuantity"] == 100


def test_get_product(client, products):
    r = client.get("/products/1")
    assert r.status_code == 200
    assert r.json()["name"] == "Glow Serum"

    r = client.get("/products/99")
    assert r.status_code == 404
    assert r.json() == {"error": "Product not found"}


def test_admin_endpoints_require_admin(client, user_headers):
    body = {"name": "Toner", "price": 950, "category": "skincare"}
    assert client.post("/admin/products", json=body).status_code == 401
    r = client.post("/admin/products", json=body, headers=user_headers)
    assert r.status_code == 403
    assert r.json() == {"error": "Admin access required"}


def test_admin_creates_and_updates_product(client, admin_headers):
    r = client.post(
        "/admin/products",
        json={"name": "Toner", "description": "Rose water", "price": "950.00", "category": "skincare",
              "stockQuantity": 12},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    product = r.json()
    assert product["price"] == 950
    assert product["imageUrl"] is None

    r = client.patch(
        f"/admin/products/{product['id']}",
        json={"price": 1000, "imageUrl": "https://cdn.test/toner.jpg"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["price"] == 1000
    assert r.json()["imageUrl"] == "https://cdn.test/toner.jpg"
    assert r.json()["name"] == "Toner"


def test_create_product_validation(client, admin_headers):
    r = client.post("/admin/products", json={"name": "", "price": -1, "category": "x"}, headers=admin_headers)
    assert r.status_code == 400
    fields = {d["field"] for d in r.json()["details"]}
    assert {"name", "price"} <= fields


def test_update_unknown_product(client, admin_headers):
    r = client.patch("/admin/products/404", json={"price": 10}, headers=admin_headers)
    assert r.status_code == 404


def test_ordered_product_cannot_be_deleted(client, products, jane_order, admin_headers):
    client.post("/orders", json=jane_order)

    r = client.delete("/admin/products/1", headers=admin_headers)
    assert r.status_code == 400
    assert "out of stock" in r.json()["error"]

    r = client.delete("/admin/products/2", headers=admin_headers)
    assert r.status_code == 200
    assert client.get("/products/2").status_code == 404


def test_seed_only_fills_an_empty_catalog(client, new_session):
    with new_session() as s:
        assert seed_sample_products(s) == len(SAMPLE_PRODUCTS)
    with new_session() as s:
        assert seed_sample_products(s) == 0
    assert len(client.get("/products").json()) == len(SAMPLE_PRODUCTS)
