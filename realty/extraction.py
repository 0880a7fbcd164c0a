"""
Attribute extraction from listing text with a language model.

The model is asked for a JSON object with a fixed set of Russian keys, or the
literal string ``ERROR`` when the listing is a rental. Nothing about the shape
of its answer is trusted: malformed JSON is repaired where possible, price and
link are always overwritten, and derived prices are computed here.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from langchain_ollama import ChatOllama

from .config import Config
from .models import ExtractedListing
from .storage import append_audit
from .utils import parse_number

logger = logging.getLogger(__name__)


RENTAL_SENTINEL = "ERROR"


class RentalSignal:
    """Returned instead of a listing when the model flags a rental."""

    def __repr__(self) -> str:
        return "RENTAL"


RENTAL = RentalSignal()


PROMPT_TEMPLATE = """
Ты - помощник, который анализирует объявления о недвижимости и извлекает из них конкретные данные.
Тебе предоставляется текст объявления, и ты должен вернуть JSON-объект с заполненными полями.
Если ты не можешь определить какое-то значение, ставь null.
Если объявление не о продаже, а об аренде (например, содержит слова "сдается", "в аренду" и т.п.), верни только строку "ERROR", без дополнительного текста.

Поля:
- "этажность_дома": string | null
- "этаж": string | null
- "тип_строения": string | null
- "ремонт": string | null
- "планировка": string | null
- "количество_комнат": string | null
- "год_постройки": string | null
- "ссылка": string (уже заполнена)
- "местоположение": string | null
- "дата_публикации": string | null
- "площадь": number | null

Текст объявления:
{text}

Ссылка: {link}

Верни только JSON-объект или строку "ERROR", без дополнительного текста. Прежде чем отправить JSON обьект проверь его на валидность. Приведи полученные данные в нужный вид!
"""


def build_prompt(text: str, link: str) -> str:
    return PROMPT_TEMPLATE.format(text=text, link=link).strip()


def repair_json(raw: str) -> str:
    """Cut the text down to the span between the first '{' and the last '}'."""
    raw = raw.strip()
    first = raw.find("{")
    last = raw.rfind("}")
    if first != -1 and last > first:
        return raw[first:last + 1]
    return raw


def parse_model_json(raw: str) -> Optional[Dict[str, Any]]:
    """Parse the model answer as a JSON object, repairing it once. None on failure."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Model JSON is invalid: {e}. Trying to repair...")
        fixed = repair_json(raw)
        logger.debug(f"Repaired string: {fixed}")
        try:
            data = json.loads(fixed)
        except json.JSONDecodeError as e:
            logger.error(f"Could not repair JSON: {e}")
            return None
    if not isinstance(data, dict):
        logger.error(f"Model JSON is not an object: {type(data).__name__}")
        return None
    return data


def apply_pricing(listing: ExtractedListing, exchange_rate: float) -> ExtractedListing:
    """Fill derived price fields, or null them when price or area is unusable."""
    price = parse_number(listing.price)
    area = parse_number(listing.area)
    logger.debug(f"Numeric price: {price}, area: {area}")

    if price is not None and area is not None and price > 0 and area > 0:
        converted = price * exchange_rate
        listing.price_per_area = f"{price / area:.2f}"
        listing.price_converted = f"{converted:.0f}"
        listing.price_per_area_converted = f"{converted / area:.2f}"
    else:
        logger.warning("Cannot compute prices from the extracted data")
        listing.price_per_area = None
        listing.price_converted = None
        listing.price_per_area_converted = None
    return listing


class ChatModelClient:
    """Single round trip to an Ollama chat model."""

    def __init__(self, model: str = "mistral", base_url: Optional[str] = None, temperature: float = 0.0):
        kwargs = {"model": model, "temperature": temperature}
        if base_url:
            kwargs["base_url"] = base_url
        self.model_name = model
        self._llm = ChatOllama(**kwargs)
        logger.info(f"Initialized AI model: {model}")

    @classmethod
    def from_config(cls, config: Config) -> "ChatModelClient":
        return cls(config.ollama_model, config.ollama_base_url, config.ollama_temperature)

    async def invoke(self, prompt: str) -> str:
        response = await self._llm.ainvoke([("human", prompt)])
        content = response.content
        if isinstance(content, list):
            content = "".join(
                part if isinstance(part, str) else str(part.get("text", ""))
                for part in content
            )
        return str(content).strip()


class AttributeExtractor:
    """
    Runs one listing through the model and post-processes the answer.

    ``llm`` is anything with ``async invoke(prompt) -> str``. Model errors are
    not retried; they propagate so the caller can exclude the link.
    """

    def __init__(self, llm, exchange_rate: float, audit_path: Optional[Path] = None):
        self.llm = llm
        self.exchange_rate = exchange_rate
        self.audit_path = audit_path

    @classmethod
    def from_config(cls, llm, config: Config) -> "AttributeExtractor":
        return cls(llm, config.exchange_rate, config.path(config.debug_file))

    async def extract(self, text: str, link: str, price: str) -> Union[ExtractedListing, RentalSignal]:
        logger.info(f"Processing listing with AI: {link}")
        logger.debug(f"Exchange rate: {self.exchange_rate}, source price: {price}")
        prompt = build_prompt(text, link)

        raw = (await self.llm.invoke(prompt)).strip()
        logger.debug(f"Raw model response: {raw}")

        if raw == RENTAL_SENTINEL:
            logger.warning(f"Model flagged a rental: {link}")
            self._audit(prompt, raw, RENTAL_SENTINEL, text)
            return RENTAL

        data = parse_model_json(raw) or {}
        data["ссылка"] = link
        data["цена"] = price
        listing = apply_pricing(ExtractedListing.model_validate(data), self.exchange_rate)

        self._audit(prompt, raw, listing.to_dict(), text)
        logger.info(f"Listing processed by AI: {link}")
        return listing

    def _audit(self, prompt: str, raw: str, final: Any, text: str) -> None:
        if self.audit_path is None:
            return
        try:
            append_audit(self.audit_path, prompt, raw, final, text)
        except OSError as e:
            logger.error(f"Error writing audit log: {e}")
