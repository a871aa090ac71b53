from aws_cdk import Stage
from constructs import Construct

from wordpress_container.wordpress_container_stack import WordpressContainerStack


class WordpressStage(Stage):
    """One deployable topology; the stack inside is always called ``Stack``."""

    def __init__(self, scope: Construct, construct_id: str, topology: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.stack = WordpressContainerStack(self, "Stack", topology=topology)
