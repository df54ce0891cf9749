import requests

url = "http://localhost:5000/api/create-payment-intent"
payload = {
    "items": [
        {
            "title": "Test Sticker",
            "unitPrice": 50,
            "qty": 3,
        }
    ],
    "metadata": {"source": "debug_checkout"},
    "currency": "inr",
}

try:
    print(f"Sending POST request to {url}...")
    response = requests.post(url, json=payload, timeout=15)
    print(f"Status Code: {response.status_code}")
    print("Response Body:")
    print(response.text)
except requests.RequestException as e:
    print(f"Error: {e}")
