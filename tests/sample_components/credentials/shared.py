class SharedSecret:

    def __init__(self):
        self.name = "sharedSecret"


credential_class = SharedSecret
