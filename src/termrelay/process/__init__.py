from termrelay.process.supervisor import ProcessSupervisor

__all__ = ["ProcessSupervisor"]
