"""Pytest configuration and fixtures for LensAgent tests."""

import asyncio
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from lens_agent.agents.stage import StagePrompt
from lens_agent.config import LensAgentConfig, get_config
from lens_agent.models import LogEntry, RawBugReport, UserAction

# Sentinel: the scripted invoker never answers this call (until cancelled).
HANG = "hang"


class ScriptedInvoker:
    """Model invoker that replays canned responses per role.

    A response may be a payload dict, an exception instance (raised), the
    HANG sentinel, or a list of those consumed one per call.
    """

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = {role: list(r) if isinstance(r, list) else r for role, r in responses.items()}
        self.calls: list[str] = []
        self.prompts: dict[str, StagePrompt] = {}
        self.cancelled: list[str] = []

    async def __call__(self, role: str, prompt: StagePrompt) -> dict[str, Any]:
        self.calls.append(role)
        self.prompts[role] = prompt
        response = self.responses[role]
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, BaseException):
            raise response
        if response == HANG:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled.append(role)
                raise
        return response


@pytest.fixture(autouse=True)
def clear_config_cache() -> Any:
    """Each test sees a fresh configuration singleton."""
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def settings() -> LensAgentConfig:
    """Configuration isolated from the host environment, with no backoff delay."""
    with patch.dict(os.environ, {}, clear=True):
        return LensAgentConfig(
            _env_file=None,  # type: ignore[call-arg]
            llm_api_key="test-key",
            stage_retry_backoff=0.0,
            pipeline_timeout=0.0,
        )


@pytest.fixture
def locate_payload() -> dict[str, Any]:
    return {
        "intent": {
            "user_action": "clicked the submit button on the checkout form",
            "expected_behavior": "order is placed",
            "actual_behavior": "nothing happens, TypeError in console",
            "inferred_features": ["checkout"],
            "ui_elements": ["submit-button"],
            "error_patterns": ["TypeError"],
            "page_context": "/checkout",
            "confidence": 80,
        },
        "candidates": [
            {"path": "src/checkout/CheckoutForm.tsx", "reason": "submit handler", "relevance_score": 0.8},
            {"path": "src/cart/total.ts", "reason": "total computation", "relevance_score": 0.6},
        ],
        "search_keywords": ["checkout", "submit"],
        "code_context": "CheckoutForm calls calculateTotal on submit",
    }


@pytest.fixture
def investigate_payload() -> dict[str, Any]:
    return {
        "hypotheses": [
            {
                "id": "h2",
                "summary": "Race between cart load and submit",
                "explanation": "Submit fires before the cart request resolves",
                "likelihood": 35,
                "supporting_evidence": ["click 50ms before error"],
                "contra_evidence": [],
            },
            {
                "id": "h1",
                "summary": "cart.total read on undefined cart",
                "explanation": "calculateTotal dereferences cart without a guard",
                "likelihood": 80,
                "supporting_evidence": ["total.ts:12"],
                "contra_evidence": ["cart is usually loaded"],
            },
        ],
        "primary_hypothesis": "h1",
        "additional_context": "",
    }


@pytest.fixture
def explain_payload() -> dict[str, Any]:
    return {
        "analysis": {
            "is_valid_report": True,
            "invalid_reason": None,
            "severity": "high",
            "category": "runtime_error",
            "root_cause": {
                "summary": "calculateTotal reads total of an undefined cart",
                "explanation": "total.ts:12 dereferences cart before it is loaded",
                "affected_files": ["src/cart/total.ts"],
                "evidence_chain": ["TypeError -> calculateTotal -> missing guard"],
            },
            "suggested_fix": {
                "steps": ["Guard against an undefined cart"],
                "code_changes": [
                    {
                        "file": "src/cart/total.ts",
                        "line": 12,
                        "description": "add optional chaining",
                        "before": "cart.total",
                        "after": "cart?.total ?? 0",
                    }
                ],
            },
            "prevention": ["Type the cart as possibly undefined"],
            "confidence": 70,
            "additional_context": None,
        }
    }


@pytest.fixture
def review_payload() -> dict[str, Any]:
    return {
        "approved": True,
        "confidence_adjustment": -10,
        "issues": ["Race hypothesis not ruled out"],
        "suggestions": ["Check the cart loading state"],
        "verified_claims": ["total.ts:12 dereferences cart"],
        "counter_evidence": [],
    }


@pytest.fixture
def stage_payloads(
    locate_payload: dict[str, Any],
    investigate_payload: dict[str, Any],
    explain_payload: dict[str, Any],
    review_payload: dict[str, Any],
) -> dict[str, Any]:
    """Valid payloads for all four roles."""
    return {
        "locate": locate_payload,
        "investigate": investigate_payload,
        "explain": explain_payload,
        "review": review_payload,
    }


@pytest.fixture
def make_invoker(stage_payloads: dict[str, Any]) -> Callable[..., ScriptedInvoker]:
    """Factory: ScriptedInvoker with valid payloads, overridable per role."""

    def _make(**overrides: Any) -> ScriptedInvoker:
        return ScriptedInvoker({**stage_payloads, **overrides})

    return _make


@pytest.fixture
def sample_report() -> RawBugReport:
    """One error at t=1000ms preceded by a click at t=950ms."""
    return RawBugReport(
        title="Checkout button does nothing",
        description="Clicking submit on the checkout page does nothing.",
        url="https://shop.example.com/checkout",
        user_agent="Mozilla/5.0",
        logs=[
            LogEntry(level="info", message="cart loaded", timestamp=500),
            LogEntry(
                level="error",
                message="TypeError: Cannot read properties of undefined (reading 'total')",
                timestamp=1000,
                stack="at calculateTotal (https://shop.example.com/src/cart/total.ts:12:5)",
            ),
        ],
        actions=[UserAction(action="click", target="submit-button", timestamp=950)],
    )


@pytest.fixture
def sample_issue_body() -> str:
    """Issue body in the reporting widget's layout."""
    return """## Bug Report

The checkout button does nothing when I click it.

---

### Environment

| Field | Value |
|-------|-------|
| URL | https://shop.example.com/checkout |
| User Agent | Mozilla/5.0 (X11; Linux x86_64) |
| Timestamp | 2026-01-06T14:26:08.789Z |

---

### Performance

LCP: 3200ms | FID: 40ms | CLS: 0.020 | TTFB: 300ms | DOM Loaded: 680ms | Load Complete: 1332ms | Resources: 64

---

### Console Logs

```
[INFO] [NETWORK] POST https://api.example.com/orders
Status: 500
Duration: 98ms
[ERROR] [ERROR] [2026-01-06T14:26:04.000Z] TypeError: Cannot read properties of undefined (reading 'total')
    at calculateTotal (https://shop.example.com/src/cart/total.ts:12:5)
[WARN] Deprecated API used
```

---

### User Actions (Last 20)

```
[2026-01-06T14:26:02.948Z] CLICK on section > form.checkout-form > input.rounded-xl.px-4
[2026-01-06T14:26:03.950Z] CLICK on section > form.checkout-form > button.submit-order
```

---

### Navigation History

```
[2026-01-06T14:26:01.894Z] pageload: [direct] → https://shop.example.com/checkout
```

---

### Metadata

```json
{
  "labels": ["inner-lens"]
}
```
"""


TOTAL_TS = "\n".join(
    ["import { formatPrice } from './format';", ""]
    + [f"// pricing rule {n}" for n in range(3, 11)]
    + ["export function calculateTotal(cart) {", "  return formatPrice(cart.total);", "}", ""]
)


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """Small checkout of the reported shop application.

    src/cart/total.ts line 12 is where the sample stack trace points.
    """
    files = {
        "src/cart/total.ts": TOTAL_TS,
        "src/cart/format.ts": "export const formatPrice = (value) => `$${value.toFixed(2)}`;\n",
        "src/cart/total.test.ts": "import { calculateTotal } from './total';\n",
        "src/checkout/CheckoutForm.tsx": (
            "import { calculateTotal } from '../cart/total';\n\n"
            "export function CheckoutForm({ cart }) {\n"
            "  const onSubmit = () => calculateTotal(cart);\n"
            '  return <button className="submit-order" onClick={onSubmit}>Pay</button>;\n'
            "}\n"
        ),
        "node_modules/left-pad/index.js": "module.exports = function calculateTotal() {};\n",
        ".cache/total.js": "calculateTotal();\n",
        "README.md": "calculateTotal docs\n",
    }
    for rel, text in files.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return tmp_path
