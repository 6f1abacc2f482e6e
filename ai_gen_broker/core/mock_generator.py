"""
Mock generation, the last strategy in the fallback chain.

Deterministic and dependency-free so it can always produce a non-empty
answer.
"""

from .local_generator import analyze_code_type, extract_component_name, extract_function_name


class MockGenerator:
    """Canned templates keyed on a few prompt keywords."""

    def generate(self, prompt: str, mode: str) -> str:
        if mode == "generate":
            lowered = prompt.lower()
            if "component" in lowered:
                return self._component(prompt)
            if "api" in lowered:
                return self._api()
            return self._function(prompt)
        if mode == "explain":
            return self._explanation(prompt)
        return "I'm here to help with your coding needs. Please describe what you want to build."

    @staticmethod
    def _component(prompt: str) -> str:
        name = extract_component_name(prompt) or "MyComponent"
        return f"""import React from 'react';

// Generated by the mock assistant
const {name} = () => {{
  return (
    <div>
      <h1>{name}</h1>
      <p>Component generated for: "{prompt}"</p>
    </div>
  );
}};

export default {name};"""

    @staticmethod
    def _api() -> str:
        return """// Generated by the mock assistant
app.get('/api/example', async (req, res) => {
  try {
    res.json({ success: true, message: 'Example endpoint' });
  } catch (error) {
    res.status(500).json({ success: false, message: error.message });
  }
});"""

    @staticmethod
    def _function(prompt: str) -> str:
        name = extract_function_name(prompt) or "myFunction"
        return f"""// Generated by the mock assistant
function {name}() {{
  // Implementation for: {prompt}
  return null;
}}

export default {name};"""

    @staticmethod
    def _explanation(prompt: str) -> str:
        return (
            f"This {analyze_code_type(prompt)} takes its inputs, processes them step by step, "
            "and returns a result. Review the error handling and edge cases before relying on it.\n\n"
            "Note: this is a placeholder answer from the mock assistant."
        )
