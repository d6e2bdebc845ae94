from .client import chat_completion, parse_json_content, strip_code_fences

__all__ = ["chat_completion", "parse_json_content", "strip_code_fences"]
