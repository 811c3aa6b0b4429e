"""
LLM Package

    from docpipeline.llm import ChatModelClient

    llm = ChatModelClient.from_settings(settings)
    text = await llm.complete(system_prompt, user_prompt)
"""

from docpipeline.llm.client import ChatModelClient, LLMClient, classify_llm_error

__all__ = ["ChatModelClient", "LLMClient", "classify_llm_error"]
