"""Components package used by the nodes pool tests"""
