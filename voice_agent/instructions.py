"""
Agent system prompts and greetings.

Supports scenario-based configuration:
- Different system prompts per scenario
- Fixed greeting text per scenario (spoken via TTS right after joining)
- Scenario selection via flow parameter or AGENT_SCENARIO env var

Scenarios are stored as YAML (preferred) or JSON; PyYAML's safe_load parses both.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_SYSTEM_PROMPT = """
You are a helpful AI support assistant for A Startup Biz, a business consulting and services company.

Your role:
- Help users with questions about our services (business consulting, web development, marketing)
- Assist with scheduling consultations and appointments
- Answer general business inquiries
- Provide information about our partner program
- Help troubleshoot common issues

Guidelines:
- Be friendly, professional, and concise
- If you don't know something, offer to connect them with a human agent
- Keep responses focused and avoid unnecessary filler
- Acknowledge the user's needs before providing information
- For complex issues, recommend scheduling a consultation

Services we offer:
1. Business Strategy Consulting - $750/hour
2. Web Development - $1,500-$7,500 per project
3. Marketing Services - $1,500/month retainer
4. SEO Optimization - Starting at $500/month

For emergencies or urgent matters, recommend calling our main line or emailing support@astartupbiz.com.
""".strip()

DEFAULT_GREETING = "Hello! I'm your AI assistant. How can I help you today?"


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Scenario file {path} must contain a mapping at top-level")
        return data


def load_scenario(scenario_name: str) -> Dict[str, Any]:
    """
    Load scenario configuration from a YAML or JSON file.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) default.yaml / default.yml / default.json
    3) built-in default
    """
    scenarios_dir = _get_scenarios_dir()

    for name in (scenario_name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = scenarios_dir / f"{name}{suffix}"
            if candidate.exists():
                return _load_file(candidate)

    return {
        "name": "default",
        "prompt": DEFAULT_SYSTEM_PROMPT,
        "greeting_text": DEFAULT_GREETING,
    }


def get_scenario(flow: Optional[str] = None) -> Dict[str, Any]:
    """Scenario for the flow parameter, else AGENT_SCENARIO, else "default"."""
    scenario_name = flow or os.getenv("AGENT_SCENARIO", "default")
    return load_scenario(scenario_name)


def get_instructions(flow: Optional[str] = None, custom_instructions: Optional[str] = None) -> str:
    """System prompt for the scenario, optionally with extra instructions appended."""
    scenario = get_scenario(flow)
    prompt = scenario.get("prompt", DEFAULT_SYSTEM_PROMPT).strip()

    if custom_instructions:
        return f"{prompt}\n\n{custom_instructions}"
    return prompt


def build_system_prompt(additional_context: Optional[str] = None, flow: Optional[str] = None) -> str:
    """Scenario prompt with an "Additional Context" section when context is given."""
    base = get_instructions(flow=flow)
    if additional_context:
        return f"{base}\n\nAdditional Context:\n{additional_context}"
    return base


def get_greeting_text(flow: Optional[str] = None) -> str:
    scenario = get_scenario(flow)
    return scenario.get("greeting_text", DEFAULT_GREETING)
