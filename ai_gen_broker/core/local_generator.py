"""
Local heuristic generation.

Produces templated code skeletons when no remote model answered. The
extractors are pure keyword scans over the user prompt and are only used
inside this module and the mock generator.
"""

import logging
import random
import re
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ArtifactType(Enum):
    """Kind of artifact a prompt asks for."""
    COMPONENT = "component"
    API_ENDPOINT = "api_endpoint"
    DATA_SCHEMA = "data_schema"
    FUNCTION = "function"
    CLASS = "class"
    EXPLANATION = "explanation"


_ARTIFACT_KEYWORDS = (
    (ArtifactType.COMPONENT, ("component", "react")),
    (ArtifactType.API_ENDPOINT, ("api", "endpoint", "route")),
    (ArtifactType.DATA_SCHEMA, ("database", "mongo", "schema")),
    (ArtifactType.FUNCTION, ("function", "method")),
    (ArtifactType.CLASS, ("class", "constructor")),
)

_STOP_WORDS = (
    "a", "an", "the", "new", "simple", "me", "my", "that", "which",
    "called", "named", "for", "with", "to", "async",
)
_NAME = r"\b(?!(?:" + "|".join(_STOP_WORDS) + r")\b)(\w+)"

_FUNCTION_NAME = re.compile(
    rf"(?:called|named)\s+{_NAME}|\bfunction\s+{_NAME}|{_NAME}\s+function|\bcreate\s+{_NAME}",
    re.IGNORECASE,
)
_COMPONENT_NAME = re.compile(
    rf"(?:called|named)\s+{_NAME}|\bcomponent\s+{_NAME}|{_NAME}\s+component|\bcreate\s+{_NAME}",
    re.IGNORECASE,
)


def classify_artifact(prompt: str, mode: str) -> ArtifactType:
    """First matching artifact type; functions are the generate default."""
    if mode == "explain":
        return ArtifactType.EXPLANATION
    lowered = prompt.lower()
    for artifact, keywords in _ARTIFACT_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return artifact
    return ArtifactType.FUNCTION


def _first_name(pattern: re.Pattern, prompt: str) -> Optional[str]:
    match = pattern.search(prompt)
    if not match:
        return None
    return next(group for group in match.groups() if group)


def extract_function_name(prompt: str) -> Optional[str]:
    return _first_name(_FUNCTION_NAME, prompt)


def extract_component_name(prompt: str) -> Optional[str]:
    name = _first_name(_COMPONENT_NAME, prompt)
    return name[0].upper() + name[1:] if name else None


def extract_http_method(prompt: str) -> str:
    """HTTP verb implied by the prompt; `get` by default."""
    lowered = prompt.lower()
    if "post" in lowered or "create" in lowered:
        return "post"
    if "put" in lowered or "update" in lowered:
        return "put"
    if "delete" in lowered or "remove" in lowered:
        return "delete"
    if "patch" in lowered:
        return "patch"
    return "get"


def extract_endpoint_path(prompt: str) -> str:
    match = re.search(r"/[\w\-/:]*", prompt)
    if match:
        return match.group(0)
    lowered = prompt.lower()
    for resource in ("user", "product", "order"):
        if resource in lowered:
            return f"/api/{resource}s/:id"
    return "/api/example/:id"


def extract_model_name(prompt: str) -> str:
    match = re.search(r"(?:model|schema|collection)\s+" + _NAME, prompt, re.IGNORECASE)
    if match:
        name = match.group(1)
        return name[0].upper() + name[1:]
    lowered = prompt.lower()
    for resource in ("user", "product", "order", "post"):
        if resource in lowered:
            return resource.capitalize()
    return "Item"


def extract_class_name(prompt: str) -> str:
    match = re.search(r"class\s+" + _NAME, prompt, re.IGNORECASE)
    if match:
        name = match.group(1)
        return name[0].upper() + name[1:]
    for word in prompt.split():
        if re.fullmatch(r"[A-Z][a-zA-Z]*", word):
            return word
    return "MyClass"


def analyze_code_type(prompt: str) -> str:
    """Shallow, case-sensitive sniff used by explanations."""
    if "function" in prompt:
        return "function"
    if "component" in prompt:
        return "UI component"
    if "api" in prompt:
        return "API endpoint"
    if "class" in prompt:
        return "class"
    if "schema" in prompt:
        return "database schema"
    return "code"


def render_component(prompt: str) -> str:
    name = extract_component_name(prompt) or "MyComponent"
    lowered = prompt.lower()
    has_state = "state" in lowered
    has_props = "prop" in lowered

    imports = "import React, { useState } from 'react';" if has_state else "import React from 'react';"
    lines = [imports, "", f"const {name} = ({'props' if has_props else ''}) => {{"]
    if has_state:
        lines += [
            "  const [data, setData] = useState(null);",
            "  const [loading, setLoading] = useState(false);",
        ]
    lines += [
        "  return (",
        f'    <div className="{name.lower()}">',
        f"      <h1>{name}</h1>",
    ]
    if has_props:
        lines.append("      <pre>{JSON.stringify(props, null, 2)}</pre>")
    if has_state:
        lines.append("      {loading ? <p>Loading...</p> : <pre>{JSON.stringify(data)}</pre>}")
    lines += [
        "    </div>",
        "  );",
        "};",
        "",
        f"export default {name};",
    ]
    return "\n".join(lines)


def render_api_endpoint(prompt: str) -> str:
    method = extract_http_method(prompt)
    path = extract_endpoint_path(prompt)
    return f"""// {method.upper()} {path}
app.{method}('{path}', async (req, res) => {{
  try {{
    const {{ body, params, query }} = req;

    // TODO: replace with real business logic
    const result = {{
      success: true,
      message: '{method.upper()} {path} executed successfully',
      data: {{ body, params, query }},
      timestamp: new Date().toISOString()
    }};

    res.status(200).json(result);
  }} catch (error) {{
    res.status(500).json({{ success: false, message: error.message }});
  }}
}});"""


def render_data_schema(prompt: str) -> str:
    name = extract_model_name(prompt)
    var = name[0].lower() + name[1:] + "Schema"
    return f"""import mongoose from 'mongoose';

const {var} = new mongoose.Schema({{
  name: {{ type: String, required: true, trim: true }},
  description: {{ type: String, trim: true }},
  status: {{ type: String, enum: ['active', 'inactive'], default: 'active' }},
  createdBy: {{ type: mongoose.Schema.Types.ObjectId, ref: 'User', required: true }}
}}, {{ timestamps: true }});

{var}.index({{ name: 1 }});
{var}.index({{ createdAt: -1 }});

export const {name} = mongoose.model('{name}', {var});"""


def render_function(prompt: str) -> str:
    name = extract_function_name(prompt) or "myFunction"
    lowered = prompt.lower()
    is_async = "async" in lowered or "await" in lowered
    params = "params" if "param" in lowered else ""

    if is_async:
        body = f"""  try {{
    const result = await Promise.resolve({params or 'null'});
    return {{ success: true, data: result }};
  }} catch (error) {{
    return {{ success: false, error: error.message }};
  }}"""
    else:
        body = f"""  console.log('{name} called with:', {params or 'undefined'});
  return {{ success: true, message: 'Function executed successfully' }};"""

    return f"""{'async ' if is_async else ''}function {name}({params}) {{
{body}
}}

export default {name};"""


def render_class(prompt: str) -> str:
    name = extract_class_name(prompt)
    return f"""class {name} {{
  constructor(options = {{}}) {{
    this.name = options.name || '{name}';
    this.created = new Date();
    this.data = options.data || {{}};
  }}

  getName() {{
    return this.name;
  }}

  setData(data) {{
    this.data = {{ ...this.data, ...data }};
    return this;
  }}

  toJSON() {{
    return {{ name: this.name, created: this.created, data: this.data }};
  }}
}}

export default {name};"""


def render_explanation(prompt: str) -> str:
    code_type = analyze_code_type(prompt)
    return f"""This looks like a {code_type} implementation.

## Key Points
- Structure: the code is organized into small, single-purpose units
- Error handling: failures are caught and reported instead of crashing
- Data flow: inputs are read, transformed, and returned explicitly

## What to Check
- Validate inputs at the boundaries before using them
- Keep side effects (network, storage) out of pure helpers
- Add tests for the edge cases the {code_type} handles

Note: this explanation was produced by the local assistant because no remote model was available."""


_RENDERERS = {
    ArtifactType.COMPONENT: render_component,
    ArtifactType.API_ENDPOINT: render_api_endpoint,
    ArtifactType.DATA_SCHEMA: render_data_schema,
    ArtifactType.FUNCTION: render_function,
    ArtifactType.CLASS: render_class,
    ArtifactType.EXPLANATION: render_explanation,
}


class LocalHeuristicGenerator:
    """Keyword-driven template generator with simulated latency."""

    def __init__(
        self,
        min_delay_seconds: float = 0.5,
        max_delay_seconds: float = 1.5,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.min_delay_seconds = min_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.sleep = sleep
        self.rng = rng or random.Random()

    def generate(self, prompt: str, mode: str) -> str:
        delay = self.rng.uniform(self.min_delay_seconds, self.max_delay_seconds)
        if delay > 0:
            self.sleep(delay)

        if mode not in ("generate", "explain"):
            return "The local assistant is ready to help with your coding needs."

        artifact = classify_artifact(prompt, mode)
        logger.debug("Local heuristic rendering %s", artifact.value)
        return _RENDERERS[artifact](prompt)
