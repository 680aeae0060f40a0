"""
Interactive walkthrough of the phone login flow against a running server.

    python scripts/try_login_flow.py
    OTPAUTH_BASE_URL=https://auth.example.com/api/v1 python scripts/try_login_flow.py

The console backend never logs codes, so point the server at a real SMS
backend (twilio or fast2sms) and read the code from the phone.
"""

import json
import os

import httpx
from dotenv import load_dotenv

load_dotenv()

BASE_URL = os.getenv("OTPAUTH_BASE_URL", "http://localhost:8000/api/v1")


def print_section(title):
    print("\n" + "=" * 80)
    print(f"  {title}")
    print("=" * 80)


def print_response(response: httpx.Response):
    print(f"HTTP {response.status_code}")
    print(json.dumps(response.json(), indent=2, ensure_ascii=False))


def main():
    print("\n🚀 OTP Auth - Login Flow Walkthrough")
    print(f"Server: {BASE_URL}\n")

    with httpx.Client(base_url=BASE_URL, timeout=30.0) as client:
        print_section("STEP 1: Request a code")
        phone = input("Phone number (with country code): ").strip()

        response = client.post("/auth/send-code", json={"phoneNumber": phone})
        print_response(response)
        if response.status_code != 200:
            return

        print_section("STEP 2: Verify the code")
        while True:
            code = input("Code from SMS (or 'resend'): ").strip()
            if code == "resend":
                print_response(client.post("/auth/send-code", json={"phoneNumber": phone, "isResend": True}))
                continue

            response = client.post("/auth/verify-code", json={"phoneNumber": phone, "code": code})
            print_response(response)
            if response.status_code == 200:
                break
            if response.json().get("errorKind") != "INVALID_CODE":
                return

        result = response.json()
        if result["state"] == "PENDING_REGISTRATION":
            print_section("STEP 3: Register")
            name = input("Display name: ").strip()
            response = client.post(
                "/auth/register",
                json={"registrationToken": result["registrationToken"], "displayName": name},
            )
            print_response(response)
            if response.status_code != 201:
                return
            result = response.json()

        credential = result["credential"]

        print_section("STEP 4: Who am I")
        print_response(client.get("/me", headers={"Authorization": f"Bearer {credential}"}))

        print_section("STEP 5: Refresh")
        print_response(client.post("/auth/refresh", json={"credential": credential}))

    print("\n✅ Done")


if __name__ == "__main__":
    main()
