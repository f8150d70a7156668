"""
Ollama client integration for chain game policies.

This module provides a decision policy that sends an echelon's observable
state to an Ollama-hosted LLM and parses the reply into an order. Every
failure (network error, bad status, unparseable reply) is retried and
finally replaced by a local heuristic, so a period never fails because
the model server is slow or down.
"""

import json
import logging
import re
import time
from typing import Dict, List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError

from ..config import ChainConfig
from ..engine.policies import (
    BacklogChasingPolicy,
    DecisionPolicy,
    ObservableState,
    PolicyDecision,
    degraded_decision,
    sanitize_order,
)
from ..exceptions import PolicyError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2"


class RemoteDecision(BaseModel):
    """Shape of the JSON object the model is asked to return"""
    order: int = Field(ge=0)
    rationale: str = ""


class OllamaPolicy(DecisionPolicy):
    """
    LLM policy using the Ollama chat API.

    The observable state is rendered into a prompt; the model must answer
    with ``{"order": <int>, "rationale": <str>}``.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        temperature: float = 0.1,
        max_retries: int = 3,
        timeout: float = 30.0,
        retry_delay: float = 1.0,
        system_prompt: Optional[str] = None,
        fallback: Optional[DecisionPolicy] = None,
        name: Optional[str] = None,
    ):
        """
        Initialize Ollama policy.

        Args:
            model_name: Name of Ollama model to use
            base_url: Ollama server URL
            temperature: LLM temperature (0.0 = deterministic, 1.0 = creative)
            max_retries: Maximum API attempts before falling back
            timeout: Request timeout in seconds
            retry_delay: Pause between attempts in seconds
            system_prompt: Custom system prompt (uses default if None)
            fallback: Heuristic used when every attempt fails
            name: Optional policy name
        """
        super().__init__(name or f"ollama_{model_name}")
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.fallback = fallback or BacklogChasingPolicy()

        # API endpoints
        self.chat_url = f"{self.base_url}/api/chat"
        self.tags_url = f"{self.base_url}/api/tags"

        self.system_prompt = system_prompt or self._create_default_system_prompt()

        # Request session for connection pooling
        self.session = requests.Session()

    def _create_default_system_prompt(self) -> str:
        return """You are one echelon of a multi-echelon supply chain game. Each period you decide how many units of one resource to order from your upstream supplier (or to put into production if you make it yourself).

GAME RULES:
- Orders and shipments travel with fixed delays, stated in every turn
- You pay a holding cost per unit kept in inventory and a backlog cost per unit owed to your customer
- Goal: keep total cost low without letting backlog build up

DECISION PROCESS:
1. Look at inventory, backlog, the last order you received and what is already in transit
2. Account for the delays before your order arrives
3. Place an order that balances service level and cost

RESPONSE FORMAT:
Respond with a JSON object only:
{"order": <non-negative integer>, "rationale": "<one short sentence>"}"""

    def decide(self, state: ObservableState) -> PolicyDecision:
        """
        Make ordering decision using the Ollama LLM.

        Never raises: after ``max_retries`` failed attempts the fallback
        heuristic answers and the decision is flagged as degraded.
        """
        user_prompt = self._create_user_prompt(state)

        error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                reply = self._call_ollama(user_prompt)
                decision = self._parse_response(reply)
                order = sanitize_order(decision.order, state.order_cap)
                return PolicyDecision(order, decision.rationale or f"{self.model_name} ordered {order}")
            except (requests.RequestException, ValueError, PolicyError) as exc:
                error = exc
                logger.warning(
                    "Attempt %d/%d failed for %s (%s/%s): %s",
                    attempt + 1, self.max_retries, self.name, state.echelon, state.resource, exc,
                )
                if attempt < self.max_retries - 1 and self.retry_delay > 0:
                    time.sleep(self.retry_delay)

        logger.warning("Using fallback decision for %s", self.name)
        return degraded_decision(self.fallback, state, f"{self.model_name} unavailable: {error}")

    def _create_user_prompt(self, state: ObservableState) -> str:
        """Create user prompt from observable state"""
        prompt_parts = [
            f"PERIOD {state.period}",
            f"Position: {state.role.upper()} ({state.echelon}), ordering {state.resource}",
            f"Current inventory: {state.inventory} units",
            f"Current backlog: {state.backlog} units",
            f"Incoming order: {state.incoming_order} units",
            f"Last order placed: {state.last_order_placed} units",
            f"Costs: ${state.holding_cost_rate:.2f} holding, ${state.backlog_cost_rate:.2f} backlog per unit",
        ]
        if state.self_supplied:
            prompt_parts.append(f"You produce {state.resource} yourself; production takes {state.production_delay} periods")
        else:
            prompt_parts.append(
                f"Delays: order takes {state.order_delay} periods to reach your supplier, "
                f"shipping takes {state.shipping_delay} periods"
            )

        if state.customer_demand is not None:
            prompt_parts.append(f"Customer demand: {state.customer_demand} units")
        if state.in_transit:
            arrivals = ", ".join(f"{qty} in period {period}" for period, qty in state.in_transit)
            prompt_parts.append(f"In transit to you: {arrivals}")
        if state.order_cap is not None:
            prompt_parts.append(f"Maximum order: {state.order_cap} units")
        if state.recent_history:
            history = [
                {"period": entry["period"], "inventory": entry["inventory"], "backlog": entry["backlog"],
                 "ordered": entry["order_placed"]}
                for entry in state.recent_history
            ]
            prompt_parts.append(f"Recent history: {json.dumps(history)}")

        prompt_parts.append("\nHow many units should you order this period?")
        return "\n".join(prompt_parts)

    def _call_ollama(self, user_prompt: str) -> str:
        """Make API call to Ollama"""
        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "format": "json",
            "options": {
                "temperature": self.temperature,
                "top_p": 0.9,
                "num_predict": 200,
            },
        }

        response = self.session.post(self.chat_url, json=payload, timeout=self.timeout)
        response.raise_for_status()

        result = response.json()
        if "message" in result and "content" in result["message"]:
            return result["message"]["content"]
        raise ValueError(f"Unexpected Ollama response format: {result}")

    def _parse_response(self, response: str) -> RemoteDecision:
        """Parse LLM response into a validated decision"""
        response = response.strip()

        try:
            return RemoteDecision.model_validate_json(response)
        except ValidationError:
            pass

        # JSON object embedded in surrounding text; a malformed one is not
        # second-guessed from stray digits
        json_match = re.search(r'\{[^{}]*"order"[^{}]*\}', response)
        if json_match:
            try:
                return RemoteDecision.model_validate(json.loads(json_match.group()))
            except (json.JSONDecodeError, ValidationError) as exc:
                raise ValueError(f"Invalid decision in response {response!r}: {exc}") from exc

        number_match = re.search(r"(?<![-\d.])(\d+)(?![\d.])", response)
        if number_match:
            return RemoteDecision(order=int(number_match.group(1)), rationale="")

        raise ValueError(f"Could not parse order from response: {response!r}")

    def check_connection(self) -> bool:
        """Check if Ollama server is accessible"""
        try:
            response = self.session.get(self.tags_url, timeout=5.0)
            return response.status_code == 200
        except requests.RequestException:
            return False

    def list_available_models(self) -> List[str]:
        """Get list of available models from Ollama"""
        try:
            response = self.session.get(self.tags_url, timeout=10.0)
            response.raise_for_status()
            data = response.json()
            return [model["name"] for model in data.get("models", [])]
        except (requests.RequestException, ValueError) as e:
            logger.warning("Failed to list models: %s", e)
            return []

    def reset(self) -> None:
        self.fallback.reset()

    def close(self) -> None:
        self.session.close()

    def __del__(self):
        """Clean up session on deletion"""
        if hasattr(self, "session"):
            self.session.close()


def create_ollama_policies(
    config: ChainConfig,
    model_name: str = DEFAULT_MODEL,
    base_url: str = DEFAULT_BASE_URL,
    **kwargs,
) -> Dict[str, OllamaPolicy]:
    """
    Create one Ollama policy per echelon of a chain.

    Args:
        config: Chain whose echelons get a policy
        model_name: Ollama model to use
        base_url: Ollama server URL
        **kwargs: Additional arguments passed to OllamaPolicy

    Returns:
        Dictionary mapping echelon names to policy instances
    """
    return {
        echelon.name: OllamaPolicy(model_name, base_url, name=f"ollama_{model_name}_{echelon.name}", **kwargs)
        for echelon in config.echelons
    }


def check_ollama_connection(base_url: str = DEFAULT_BASE_URL) -> bool:
    """
    Check the connection to an Ollama server.

    Args:
        base_url: Ollama server URL

    Returns:
        True if connection successful, False otherwise
    """
    try:
        response = requests.get(f"{base_url.rstrip('/')}/api/tags", timeout=5.0)
        return response.status_code == 200
    except requests.RequestException:
        return False
