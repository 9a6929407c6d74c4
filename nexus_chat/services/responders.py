from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import asyncio
import logging
import random

import httpx
from google.auth.credentials import Credentials
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as AuthRequest
from google.oauth2 import service_account

from nexus_chat.config import Settings

logger = logging.getLogger(__name__)

# Used when the upstream result has no fulfillment text
DEFAULT_REPLY = "Lo siento, no pude procesar tu mensaje."

DIALOGFLOW_SCOPES = ("https://www.googleapis.com/auth/cloud-platform", "https://www.googleapis.com/auth/dialogflow")


class ResponderError(Exception):
    """Reply generation failed upstream (transport, auth or quota)."""


class ResponseGenerator(ABC):
    @abstractmethod
    async def generate(self, text: str, session_id: Optional[str] = None) -> str:
        ...

    async def aclose(self) -> None:
        pass


@dataclass(frozen=True)
class PatternRule:
    keywords: Tuple[str, ...]
    replies: Tuple[str, ...]

    def matches(self, message: str) -> bool:
        return any(keyword.lower() in message for keyword in self.keywords)


# Evaluated top-down; the first matching rule wins
NEXUS_RULES: Tuple[PatternRule, ...] = (
    # Greetings
    PatternRule(
        keywords=("hola", "hello", "hi", "buenos días", "buenas tardes", "buenas noches", "saludos"),
        replies=(
            "¡Hola! Soy NEXUS AI, tu asistente inteligente. ¿En qué puedo ayudarte hoy?",
            "¡Saludos, usuario! Sistema NEXUS operativo. ¿Cuál es tu consulta?",
            "¡Buenos días! NEXUS AI a tu servicio. ¿Cómo puedo asistirte?",
            "Conexión establecida. Soy NEXUS, tu asistente de inteligencia artificial. ¿En qué te puedo ayudar?",
        ),
    ),
    # AI/Technology questions
    PatternRule(
        keywords=("inteligencia artificial", "ai", "tecnología", "futuro", "nexus", "robot", "máquina"),
        replies=(
            "La inteligencia artificial representa el futuro de la interacción humano-máquina. Como NEXUS AI, estoy diseñado para asistir y aprender continuamente.",
            "La tecnología AI como yo está evolucionando rápidamente. Mi función es procesar información y brindar respuestas útiles e inteligentes.",
            "NEXUS es un sistema avanzado de IA diseñado para comprender y responder de manera natural. ¿Hay algo específico sobre AI que te interese?",
            "El futuro de la tecnología está en sistemas como NEXUS: interfaces inteligentes que pueden adaptarse y aprender. ¿Qué aspecto te interesa más?",
        ),
    ),
    # Help/Assistance requests
    PatternRule(
        keywords=("ayuda", "help", "asistencia", "necesito", "puedes", "cómo", "qué", "explica"),
        replies=(
            "Estoy aquí para ayudarte. Como NEXUS AI, puedo asistirte con información, responder preguntas y mantener conversaciones inteligentes.",
            "Mi sistema está diseñado para proporcionar asistencia integral. ¿Qué información específica necesitas?",
            "Activando protocolos de asistencia NEXUS. Describe tu consulta y te proporcionaré la información más relevante.",
            "Sistema de ayuda NEXUS activado. Puedo ayudarte con una amplia gama de temas. ¿En qué área necesitas asistencia?",
        ),
    ),
    # Personal questions
    PatternRule(
        keywords=("quien eres", "qué eres", "nombre", "te llamas", "identidad"),
        replies=(
            "Soy NEXUS AI, un asistente de inteligencia artificial avanzado. Mi propósito es ayudar y proporcionar información útil.",
            "Mi identificación es NEXUS (Neural Enhanced eXpert User System). Soy una IA diseñada para interacciones inteligentes.",
            "NEXUS AI es mi designación. Soy un sistema de inteligencia artificial con capacidades de procesamiento natural del lenguaje.",
            "Me identifico como NEXUS, tu asistente AI. Estoy programado para comprender y responder de manera natural e inteligente.",
        ),
    ),
    # Capabilities questions
    PatternRule(
        keywords=("qué puedes hacer", "capacidades", "funciones", "servicios", "habilidades"),
        replies=(
            "Mis capacidades incluyen: procesamiento de lenguaje natural, análisis de información, respuestas inteligentes y asistencia conversacional.",
            "NEXUS puede ayudarte con información, responder preguntas complejas, mantener conversaciones naturales y proporcionar análisis inteligentes.",
            "Mi sistema está equipado con protocolos de conversación, análisis de datos, generación de respuestas contextuales y aprendizaje adaptativo.",
            "Como NEXUS AI, tengo capacidades avanzadas de comprensión, análisis y generación de respuestas personalizadas para cada consulta.",
        ),
    ),
    # Weather/Time questions
    PatternRule(
        keywords=("clima", "tiempo", "temperatura", "lluvia", "sol", "hora", "fecha"),
        replies=(
            "Lo siento, no tengo acceso a datos meteorológicos en tiempo real, pero puedo ayudarte con muchas otras consultas.",
            "Mi sistema actual no incluye sensores meteorológicos, pero estoy aquí para asistirte con información y conversación inteligente.",
            "Para información del clima, te recomiendo consultar servicios especializados. ¿Hay algo más en lo que pueda ayudarte?",
            "Los datos temporales y meteorológicos están fuera de mi alcance actual, pero tengo muchas otras capacidades disponibles.",
        ),
    ),
    # Compliments/Positive feedback
    PatternRule(
        keywords=("gracias", "excelente", "bueno", "genial", "perfecto", "increíble", "amazing"),
        replies=(
            "¡Me alegra haber sido útil! El sistema NEXUS está diseñado para brindar la mejor asistencia posible.",
            "Gracias por tu feedback positivo. Mi programación se optimiza con cada interacción exitosa.",
            "Es un placer asistirte. NEXUS AI continúa evolucionando para proporcionar mejores respuestas.",
            "Aprecio tu reconocimiento. Mi objetivo es superar las expectativas en cada consulta.",
        ),
    ),
    # Farewells
    PatternRule(
        keywords=("adiós", "bye", "hasta luego", "nos vemos", "chao", "farewell"),
        replies=(
            "¡Hasta la próxima! NEXUS AI permanecerá en standby para futuras consultas.",
            "Conexión finalizada exitosamente. ¡Que tengas un excelente día!",
            "Sistema NEXUS entrando en modo de espera. ¡Vuelve cuando necesites asistencia!",
            "¡Adiós por ahora! NEXUS AI estará aquí cuando me necesites de nuevo.",
        ),
    ),
)

NEXUS_DEFAULT_REPLIES: Tuple[str, ...] = (
    "Interesante consulta. Como NEXUS AI, procesaré tu información y te ayudaré en lo que pueda.",
    "Entiendo tu mensaje. Mi sistema está analizando la mejor forma de asistirte.",
    "Gracias por tu consulta. NEXUS AI está procesando... ¿Puedes ser más específico?",
    "Tu mensaje ha sido recibido. ¿Podrías proporcionar más detalles para una respuesta más precisa?",
    "Sistema NEXUS activado. Analizando tu consulta... Por favor, describe más sobre lo que necesitas.",
    "Protocolo de respuesta NEXUS iniciado. ¿Hay algo específico en lo que pueda concentrarme?",
)


def match_rule(message: str, rules: Sequence[PatternRule]) -> Optional[PatternRule]:
    normalized = message.lower().strip()
    for rule in rules:
        if rule.matches(normalized):
            return rule
    return None


class PatternResponder(ResponseGenerator):
    """Canned replies picked by keyword match."""

    def __init__(
        self,
        rules: Sequence[PatternRule] = NEXUS_RULES,
        default_replies: Sequence[str] = NEXUS_DEFAULT_REPLIES,
        rng: Optional[random.Random] = None,
    ):
        self.rules = tuple(rules)
        self.default_replies = tuple(default_replies)
        self.rng = rng or random.Random()

    async def generate(self, text: str, session_id: Optional[str] = None) -> str:
        rule = match_rule(text, self.rules)
        replies = rule.replies if rule else self.default_replies
        return self.rng.choice(replies)


class DialogflowResponder(ResponseGenerator):
    """Replies from a Dialogflow ES agent through the detectIntent REST call.

    The chat session token doubles as the Dialogflow session id, so the agent
    keeps its own context per conversation. Requests are signed with
    service-account credentials, refreshed whenever the access token has
    expired. Failures are raised as ResponderError; choosing a user-facing
    message is the caller's job.
    """

    def __init__(
        self,
        project_id: str,
        credentials: Credentials,
        language_code: str = "es",
        endpoint: str = "https://dialogflow.googleapis.com/v2",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.project_id = project_id
        self.credentials = credentials
        self.language_code = language_code
        self.endpoint = endpoint.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._refresh_lock = asyncio.Lock()

    def session_path(self, session_id: str) -> str:
        return f"projects/{self.project_id}/agent/sessions/{session_id}"

    async def authorization_header(self) -> dict:
        async with self._refresh_lock:
            if not self.credentials.valid:
                try:
                    # google-auth refreshes synchronously
                    await asyncio.to_thread(self.credentials.refresh, AuthRequest())
                except GoogleAuthError as e:
                    raise ResponderError(f"Dialogflow credentials refresh failed: {type(e).__name__}") from e
        return {"Authorization": f"Bearer {self.credentials.token}"}

    async def detect_intent(self, text: str, session_id: str) -> dict:
        url = f"{self.endpoint}/{self.session_path(session_id)}:detectIntent"
        payload = {
            "queryInput": {
                "text": {
                    "text": text,
                    "languageCode": self.language_code,
                }
            }
        }
        headers = await self.authorization_header()
        try:
            r = await self.client.post(url, json=payload, headers=headers)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            raise ResponderError(f"Dialogflow returned HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ResponderError(f"Dialogflow unreachable: {type(e).__name__}") from e
        except ValueError as e:
            raise ResponderError("Dialogflow returned a non-JSON body") from e

    async def generate(self, text: str, session_id: Optional[str] = None) -> str:
        result = await self.detect_intent(text, session_id or "anonymous")
        query_result = result.get("queryResult") if isinstance(result, dict) else None
        reply = (query_result or {}).get("fulfillmentText")
        return reply or DEFAULT_REPLY

    async def aclose(self) -> None:
        await self.client.aclose()


def load_dialogflow_credentials(path: str) -> Credentials:
    return service_account.Credentials.from_service_account_file(path, scopes=DIALOGFLOW_SCOPES)


def create_responder(settings: Settings) -> ResponseGenerator:
    """Build the generator selected by RESPONSE_STRATEGY."""
    strategy = settings.RESPONSE_STRATEGY.lower()
    if strategy == "pattern":
        return PatternResponder()
    if strategy == "dialogflow":
        if not settings.DIALOGFLOW_CREDENTIALS_FILE:
            raise ValueError("DIALOGFLOW_CREDENTIALS_FILE is required for the dialogflow strategy")
        credentials = load_dialogflow_credentials(settings.DIALOGFLOW_CREDENTIALS_FILE)
        # The service-account key names its project unless one is configured
        project_id = settings.DIALOGFLOW_PROJECT_ID or getattr(credentials, "project_id", None)
        if not project_id:
            raise ValueError("DIALOGFLOW_PROJECT_ID is required when the credentials file has no project_id")
        return DialogflowResponder(
            project_id=project_id,
            credentials=credentials,
            language_code=settings.DIALOGFLOW_LANGUAGE_CODE,
            endpoint=settings.DIALOGFLOW_ENDPOINT,
            timeout=settings.RESPONDER_TIMEOUT_SECONDS,
        )
    raise ValueError(f"Unknown response strategy: {settings.RESPONSE_STRATEGY}")
