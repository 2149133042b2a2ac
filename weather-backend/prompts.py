DEFAULT_CITY = "Magok-dong"

FALLBACK_RESPONSE = "Sorry, I couldn't generate a weather response."

EXTRACT_CITY_PROMPT = (
    "Extract the location (city/town/district/neighborhood) in English from the user's sentence. "
    f"If the user does not specify any location, return '{DEFAULT_CITY}'. "
    "Return ONLY the location text, with no extra words, punctuation, or formatting."
)

GENERATION_SYSTEM_PROMPT = "You are a helpful weather assistant."

GENERATION_PROMPT_TEMPLATE = """You are a weather assistant. Based on the following information, \
generate a natural language response for the user.
User input: "{user_input}"
City: {city}
Weather: {weather}
Temperature: {temperature}°C
Respond in a friendly and informative way. Answer in the same language as the user's input."""
