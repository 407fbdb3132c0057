"""
Sample $metadata documents shared by the test modules.
"""

SERVICE_URL = "https://example.com/odata/ProductService.svc"
V4_SERVICE_URL = "https://services.example.org/V4/TripPinService"

# OData v2 service as served by SAP Gateway style backends
V2_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx"
    xmlns:m="http://schemas.microsoft.com/ado/2007/08/dataservices/metadata"
    xmlns:sap="http://www.sap.com/Protocols/SAPData">
  <edmx:DataServices m:DataServiceVersion="2.0">
    <Schema Namespace="ProductModel" xmlns="http://schemas.microsoft.com/ado/2008/09/edm">
      <EntityType Name="Product" sap:label="Product">
        <Key>
          <PropertyRef Name="ID"/>
        </Key>
        <Property Name="ID" Type="Edm.Int32" Nullable="false"/>
        <Property Name="Name" Type="Edm.String" Nullable="false" sap:label="Product name"/>
        <Property Name="Price" Type="Edm.Decimal" Precision="10" Scale="2"/>
        <Property Name="Rating" Type="Edm.Int32"/>
        <Property Name="ReleaseDate" Type="Edm.DateTime"/>
      </EntityType>
      <EntityType Name="Category">
        <Key>
          <PropertyRef Name="Code"/>
        </Key>
        <Property Name="Code" Type="Edm.String" Nullable="false" MaxLength="10"/>
        <Property Name="Name" Type="Edm.String"/>
      </EntityType>
      <EntityType Name="OrderItem">
        <Key>
          <PropertyRef Name="OrderID"/>
          <PropertyRef Name="ItemNo"/>
        </Key>
        <Property Name="OrderID" Type="Edm.Int32" Nullable="false"/>
        <Property Name="ItemNo" Type="Edm.Int16" Nullable="false"/>
        <Property Name="Quantity" Type="Edm.Decimal"/>
      </EntityType>
      <EntityContainer Name="ProductService" m:IsDefaultEntityContainer="true">
        <EntitySet Name="Products" EntityType="ProductModel.Product" sap:searchable="true"/>
        <EntitySet Name="Categories" EntityType="ProductModel.Category" sap:creatable="false"/>
        <EntitySet Name="OrderItems" EntityType="ProductModel.OrderItem"/>
        <FunctionImport Name="GetProductsByRating" ReturnType="Collection(ProductModel.Product)"
            EntitySet="Products" m:HttpMethod="GET">
          <Parameter Name="rating" Type="Edm.Int32" Mode="In"/>
        </FunctionImport>
        <FunctionImport Name="DiscontinueProduct" ReturnType="Edm.Boolean" m:HttpMethod="POST">
          <Parameter Name="ID" Type="Edm.Int32" Mode="In" Nullable="false"/>
        </FunctionImport>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

# Single entity set with a string key
V2_STRING_KEY_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx">
  <edmx:DataServices>
    <Schema Namespace="Catalog" xmlns="http://schemas.microsoft.com/ado/2008/09/edm">
      <EntityType Name="Product">
        <Key>
          <PropertyRef Name="ID"/>
        </Key>
        <Property Name="ID" Type="Edm.String" Nullable="false"/>
        <Property Name="Name" Type="Edm.String"/>
      </EntityType>
      <EntityContainer Name="Catalog">
        <EntitySet Name="Products" EntityType="Catalog.Product"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

# OASIS CSDL 4.0 document that the strict strategy accepts
V4_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="4.0" xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx">
  <edmx:DataServices>
    <Schema Namespace="Trippin" xmlns="http://docs.oasis-open.org/odata/ns/edm">
      <EntityType Name="Person">
        <Key>
          <PropertyRef Name="UserName"/>
        </Key>
        <Property Name="UserName" Type="Edm.String" Nullable="false"/>
        <Property Name="Age" Type="Edm.Int64"/>
        <Property Name="Emails" Type="Edm.String"/>
      </EntityType>
      <EntityType Name="Employee" BaseType="Trippin.Person">
        <Property Name="Cost" Type="Edm.Decimal"/>
      </EntityType>
      <EntityType Name="Airline">
        <Key>
          <PropertyRef Name="AirlineCode"/>
        </Key>
        <Property Name="AirlineCode" Type="Edm.String" Nullable="false"/>
        <Property Name="Name" Type="Edm.String"/>
      </EntityType>
      <Function Name="GetNearestAirport">
        <Parameter Name="lat" Type="Edm.Double" Nullable="false"/>
        <Parameter Name="lon" Type="Edm.Double" Nullable="false"/>
        <ReturnType Type="Trippin.Airline"/>
      </Function>
      <Action Name="ResetDataSource">
        <Parameter Name="seed" Type="Edm.Int32"/>
      </Action>
      <EntityContainer Name="Container">
        <EntitySet Name="People" EntityType="Trippin.Person"/>
        <EntitySet Name="Employees" EntityType="Trippin.Employee"/>
        <EntitySet Name="Airlines" EntityType="Trippin.Airline">
          <Annotation Term="Core.Description" String="Airline companies"/>
        </EntitySet>
        <FunctionImport Name="GetNearestAirport" Function="Trippin.GetNearestAirport"/>
        <ActionImport Name="ResetDataSource" Action="Trippin.ResetDataSource"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

# Vendor attribute and a complex-typed property: strict rejects, lenient accepts
V4_VENDOR_METADATA = V4_METADATA.replace(
    '<Property Name="Emails" Type="Edm.String"/>',
    '<Property Name="Emails" Type="Trippin.EmailList" xmlns:sap="http://www.sap.com/Protocols/SAPData" '
    'sap:label="Email addresses"/>',
)

# Entity set pointing at an undeclared entity type: structural strategies fail
V2_DANGLING_METADATA = V2_STRING_KEY_METADATA.replace('EntityType="Catalog.Product"',
                                                      'EntityType="Catalog.Missing"')

# Cut off in the middle of the entity container
TRUNCATED_METADATA = V2_METADATA[:V2_METADATA.index('<EntitySet Name="OrderItems"') + 20]

# String key service with a GET function import taking a free-text parameter
V2_FUNCTION_METADATA = V2_STRING_KEY_METADATA.replace(
    '<EntitySet Name="Products" EntityType="Catalog.Product"/>',
    '<EntitySet Name="Products" EntityType="Catalog.Product"/>\n'
    '        <FunctionImport Name="FindByPath" ReturnType="Catalog.Product" EntitySet="Products">\n'
    '          <Parameter Name="path" Type="Edm.String" Mode="In"/>\n'
    '        </FunctionImport>',
)
