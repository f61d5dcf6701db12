from flowhub.adapters.descriptor.template import TemplateDescriptorProvider

__all__ = ["TemplateDescriptorProvider"]
