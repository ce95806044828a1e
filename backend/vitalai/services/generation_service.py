"""Generation client that issues prompts with feedback-tuned parameters."""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from openai import OpenAI

from vitalai.exceptions import GenerationUnavailable
from vitalai.services.tuning_service import GenerationParameters, ParameterTuningService

logger = logging.getLogger(__name__)


SYSTEM_PROMPTS = {
    "indian-cuisine": "You are a nutrition-aware chef specialising in Indian cuisine. Suggest healthy, authentic recipes.",
    "ingredient-based": "You are a precise recipe assistant. Only use the ingredients the user lists plus common pantry staples.",
    "mental-health": "You are a supportive wellbeing assistant. Be calm and kind, and recommend professional help for anything serious.",
    "fitness-plan": "You are a certified fitness coach. Build safe, progressive workout plans.",
}
DEFAULT_SYSTEM_PROMPT = "You are VitalAI, a helpful health and fitness assistant."


@dataclass
class GenerationResult:
    response_id: str
    response_type: str
    text: str
    parameters: GenerationParameters


class GenerationService:
    """Service for calling an OpenAI-compatible chat completion API."""

    def __init__(
        self,
        tuning_service: ParameterTuningService,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        model: str = "gemini-1.5-flash",
        client=None,
    ):
        self.tuning_service = tuning_service
        self.model = model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = OpenAI(api_key=api_key, base_url=base_url)
        else:
            self.client = None

    def generate(self, prompt: str, response_type: str) -> GenerationResult:
        """
        Generate a response using the tuned parameters for ``response_type``.

        The returned response_id is what feedback on this response refers to.
        top_k has no counterpart in the chat completions API and is only
        reported back with the result.
        """
        if self.client is None:
            raise GenerationUnavailable("Generation API key is not configured")

        parameters = self.tuning_service.get_parameters(response_type)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPTS.get(response_type, DEFAULT_SYSTEM_PROMPT)},
            {"role": "user", "content": self.tuning_service.enhance_prompt(prompt, response_type)},
        ]

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=parameters.temperature,
                top_p=parameters.top_p,
                max_tokens=parameters.max_output_tokens,
            )
        except Exception as e:
            raise GenerationUnavailable(f"Error calling generation API: {str(e)}") from e

        result = GenerationResult(
            response_id=str(uuid.uuid4()),
            response_type=response_type,
            text=response.choices[0].message.content or "",
            parameters=parameters,
        )
        logger.info(
            "Response generated",
            extra={
                "response_id": result.response_id,
                "response_type": response_type,
                "temperature": parameters.temperature,
                "top_p": parameters.top_p,
                "max_output_tokens": parameters.max_output_tokens,
            },
        )
        return result
