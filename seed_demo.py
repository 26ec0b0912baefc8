# seed_demo.py
"""
Load demo data into a running bookstore service through its HTTP API.

Create an admin first:
  flask --app bookstore_service.app create-admin --username admin
"""
import os

import requests

BASE_URL = os.getenv("BOOKSTORE_BASE_URL", "http://localhost:5000")
ADMIN_USERNAME = os.getenv("BOOKSTORE_ADMIN", "admin")
ADMIN_PASSWORD = os.getenv("BOOKSTORE_ADMIN_PASSWORD", "Admin@123")

DEMO_CUSTOMER = {
    "username": "demo",
    "password": "demo-pass",
    "first_name": "Demo",
    "last_name": "Customer",
    "email": "demo@example.com",
    "phone": "555-0100",
    "address": "1 Main St",
}

BOOKS = [
    {
        "isbn": "978-0132350884",
        "title": "Clean Code",
        "authors": "Robert C. Martin",
        "publisher": "Prentice Hall",
        "publication_year": 2008,
        "category": "Science",
        "price": "39.99",
    },
    {
        "isbn": "978-0201616224",
        "title": "The Pragmatic Programmer",
        "authors": "Andrew Hunt, David Thomas",
        "publisher": "Addison-Wesley",
        "publication_year": 1999,
        "category": "Science",
        "price": "44.50",
    },
    {
        "isbn": "978-0140449136",
        "title": "The Histories",
        "authors": "Herodotus",
        "publisher": "Penguin Classics",
        "publication_year": 2003,
        "category": "History",
        "price": "18.00",
    },
    {
        "isbn": "978-0714832470",
        "title": "The Story of Art",
        "authors": "E. H. Gombrich",
        "publisher": "Phaidon",
        "publication_year": 1995,
        "category": "Art",
        "price": "49.95",
    },
    {
        "isbn": "978-0393354324",
        "title": "Prisoners of Geography",
        "authors": "Tim Marshall",
        "publisher": "Scribner",
        "publication_year": 2016,
        "category": "Geography",
        "price": "17.99",
    },
    {
        "isbn": "978-0060652937",
        "title": "Mere Christianity",
        "authors": "C. S. Lewis",
        "publisher": "HarperOne",
        "publication_year": 2001,
        "category": "Religion",
        "price": "15.99",
    },
]


def check_service(url):
    """Hit /api/health and return True/False."""
    health_url = f"{url.rstrip('/')}/api/health"
    try:
        r = requests.get(health_url, timeout=3)
        print(f"[CHECK] {health_url} -> {r.status_code}")
        return r.ok
    except requests.RequestException as e:
        print(f"[ERROR] bookstore not reachable at {health_url}: {e}")
        return False


def login(username, password):
    resp = requests.post(
        f"{BASE_URL}/api/customers/login",
        json={"username": username, "password": password},
        timeout=5,
    )
    if not resp.ok:
        print(f"  login {username}: {resp.status_code} {resp.text.strip()}")
        return None
    return resp.json()["access_token"]


def seed_books(token):
    print("\n== Adding books ==")
    headers = {"Authorization": f"Bearer {token}"}
    for i, book in enumerate(BOOKS, start=1):
        payload = dict(book)
        # vary stock so some titles sit just above their threshold
        payload["quantity_in_stock"] = 10 + (i % 4) * 3
        payload["threshold"] = 10
        try:
            resp = requests.post(
                f"{BASE_URL}/api/admin/books", headers=headers, json=payload, timeout=5
            )
            print(f"  [{i:02}] {book['title']} -> {resp.status_code}")
            if not resp.ok:
                print(f"      Body: {resp.text.strip()}")
        except requests.RequestException as e:
            print(f"  [{i:02}] {book['title']} -> FAILED: {e}")


def seed_customer_purchase():
    print("\n== Demo customer checkout ==")
    resp = requests.post(f"{BASE_URL}/api/customers/register", json=DEMO_CUSTOMER, timeout=5)
    print(f"  register: {resp.status_code}")

    token = login(DEMO_CUSTOMER["username"], DEMO_CUSTOMER["password"])
    if not token:
        return
    headers = {"Authorization": f"Bearer {token}"}

    for book in BOOKS[:2]:
        resp = requests.post(
            f"{BASE_URL}/api/cart",
            headers=headers,
            json={"isbn": book["isbn"].replace("-", ""), "quantity": 4},
            timeout=5,
        )
        print(f"  cart add {book['title']}: {resp.status_code}")

    resp = requests.post(
        f"{BASE_URL}/api/checkout",
        headers=headers,
        json={"card_number": "4111 1111 1111 1111", "expiry": "12/30"},
        timeout=5,
    )
    print(f"  checkout: {resp.status_code} {resp.text.strip()}")


def main():
    print("Checking bookstore service...")
    if not check_service(BASE_URL):
        print("\nBookstore service is not reachable. Make sure it is running on 5000.")
        return

    token = login(ADMIN_USERNAME, ADMIN_PASSWORD)
    if not token:
        print("\nAdmin login failed. Run 'flask --app bookstore_service.app create-admin' first.")
        return

    seed_books(token)
    seed_customer_purchase()

    print("\nDone.")
    print("Try hitting:")
    print(f"  {BASE_URL}/api/admin/orders/pending")
    print("to see the restock orders created by the demo checkout.")


if __name__ == "__main__":
    main()
