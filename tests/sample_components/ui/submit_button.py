class SubmitButton:

    def __init__(self):
        self.label = "Submit Button"
        self.name = "submitButton"
        self.type = "Button"
        self.category = "Action"
        self.icon = "button.png"


ui_node_class = SubmitButton
