"""Minimal demonstration of one chat turn against the default service."""

from meal_agent.api.service import error_response, get_default_service
from meal_agent.domain.exceptions import BusinessError

if __name__ == "__main__":
    question = "I bought 2 lbs of chicken and I need milk. What can I cook tonight?"
    service = get_default_service()
    try:
        out = service.send_message("demo-user", question)
        print("User:", question)
        print("Agent:", out["message"]["content"])
    except BusinessError as e:
        body, status = error_response(e)
        print(f"Error ({status}):", body["error"])
    finally:
        service.close()
