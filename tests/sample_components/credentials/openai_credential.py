class OpenAIApi:

    def __init__(self):
        self.label = "OpenAI API"
        self.name = "openAIApi"
        self.inputs = [{"label": "OpenAI Api Key", "name": "openAIApiKey", "type": "password"}]


credential_class = OpenAIApi
