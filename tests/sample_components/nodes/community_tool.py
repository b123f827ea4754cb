class CommunityTool:

    def __init__(self):
        self.label = "Community Tool"
        self.name = "communityTool"
        self.category = "Tools"
        self.author = "Jane Contributor"


node_class = CommunityTool
