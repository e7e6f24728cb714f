"""User-facing texts, keyword sets and spam patterns.

Everything a customer can read comes from here so wording changes never
touch pipeline code.
"""

import re

COMPANY = "ElectronicsJS"
WEBSITE = "https://irvin-benitez.software"

WELCOME = f"""¡Hola! 👋 Soy Electra, el asistente virtual de {COMPANY}. Estoy aquí para ayudarte con información sobre nuestros productos y servicios.

Si en cualquier momento deseas hablar con un representante humano, puedes escribir "agente" o "hablar con persona real".

¿En qué puedo ayudarte hoy?"""

HUMAN_REQUEST = """Entiendo que prefieres hablar con un representante humano. Voy a conectarte con uno de nuestros agentes.

⏳ Por favor, ten en cuenta que puede haber un tiempo de espera. Mientras tanto, ¿hay algo específico en lo que pueda ayudarte?

Para volver al asistente virtual en cualquier momento, escribe "volver al bot"."""

ERROR = """Lo siento, estamos experimentando dificultades técnicas. Por favor, intenta nuevamente en unos momentos.

Si el problema persiste, puedes escribir "agente" para hablar con una persona real."""

TIMEOUT = """Lo siento, tu mensaje está tomando más tiempo del esperado. Por favor, intenta nuevamente o escribe "agente" para hablar con una persona real."""

MEDIA_RECEIVED = """¡Gracias por compartir este contenido! 📁

Para brindarte una mejor atención, te conectaré con uno de nuestros representantes que podrá revisar tu archivo y ayudarte personalmente.

⏳ Un agente se pondrá en contacto contigo pronto. Mientras tanto, ¿hay algo específico que quieras mencionar sobre el archivo compartido?"""

SPAM_WARNING = """⚠️ Has enviado demasiados mensajes repetidos. Por favor, espera 2 minutos antes de enviar más mensajes."""

RATE_LIMIT = """⚠️ Has enviado demasiados mensajes en poco tiempo.

Por favor, espera un momento antes de enviar más mensajes. Esto nos ayuda a mantener una conversación más efectiva.

Si tienes una urgencia, escribe "agente" para hablar con una persona real."""

REPEATED_MESSAGE = """Parece que estás enviando el mismo mensaje repetidamente.

¿Hay algo específico en lo que pueda ayudarte? Si necesitas hablar con un agente humano, solo escribe "agente"."""

SCHEDULE = """Horario de atención:
Atención disponible 24 horas al día, 7 días a la semana.
¡Estamos siempre listos para ayudarte!"""

WEB_PAGE = f"""Para más información, visita nuestra página web: {WEBSITE}. Estamos aquí para ayudarte con cualquier consulta que tengas sobre nuestros productos y servicios. ¡Gracias por elegir {COMPANY}!"""

WELCOME_BACK = "¡Bienvenido de vuelta! ¿En qué puedo ayudarte?"

BOT_AVAILABLE = "El asistente virtual está nuevamente disponible. ¿En qué puedo ayudarte?"

PURCHASE_FOOTER = f"""

¿Te gustaría comprar esta laptop? Aquí tienes las opciones disponibles:
- 🗣️ Hablar con un agente real: Escribe "agente" para conectarte con un representante.
- 🌐 Comprar en línea: Visita nuestra página web: {WEBSITE}
- 🏬 Visitar la tienda: Estamos ubicados en La chorrera. ¡Te esperamos!"""

# Appended to MEDIA_RECEIVED per media subtype; stickers get no suffix
MEDIA_SUFFIXES = {
    "image": "📸 He notado que has compartido una imagen.",
    "audio": "🎵 He notado que has compartido un mensaje de voz.",
    "ptt": "🎵 He notado que has compartido un mensaje de voz.",
    "video": "🎥 He notado que has compartido un video.",
    "document": "📄 He notado que has compartido un documento.",
}

HUMAN_KEYWORDS = (
    "agente",
    "persona real",
    "humano",
    "representante",
    "asesor",
    "hablar con alguien",
)

RETURN_KEYWORDS = (
    "volver al bot",
    "bot",
    "asistente virtual",
    "chatbot",
)

PURCHASE_KEYWORDS = (
    "comprar",
    "cotizar",
    "llevar",
    "adquirir",
    "quiero comprar",
    "precio",
    "costo",
)

SPAM_PATTERNS = (
    "spam",
    "publicidad",
    "promo",
    "gana dinero",
    "investment",
    "casino",
    "lottery",
    "premio",
    "ganaste",
    "bitcoin",
    "crypto",
    "prestamo",
    "loan",
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # email
    re.compile(r"(?:https?://)?(?:[\w-]+\.)+[a-zA-Z]{2,}(?:/[^\s]*)?"),  # url
)
