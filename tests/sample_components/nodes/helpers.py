def format_prompt(text):
    return text.strip()
